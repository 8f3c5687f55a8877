import functools
import os
import time
from random import uniform
from typing import Dict, List, Optional

import boto3 as boto3
from botocore.exceptions import ClientError

from chalicelib.constants import substitute_keys
from chalicelib.utils import data
from chalicelib.utils import exceptions
from chalicelib.utils.boto_clients import aws_config_ddb
from chalicelib.utils.logger import logger, log_exception

# For safe db operations
RETRY_EXCEPTIONS = ('ProvisionedThroughputExceededException', 'ThrottlingException',
                    'RequestLimitExceeded', 'InternalServerError')
# Expected outcomes of conditional writes, callers handle them
CONDITIONAL_EXCEPTIONS = ('ConditionalCheckFailedException', 'TransactionCanceledException')
need_return_capacity = ('put_item', 'get_item', 'update_item', 'delete_item', 'query', 'transact_write_items')

_TABLES = {}


def exp_db_backoff(func):
    """
        should be used for any atomic
        get/put item in the code
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger.debug(f'{func.__name__}:: args={args}, kwargs={kwargs}')
        max_retries = 15
        timeout_seed = uniform(0.1, 0.99)

        if func.__name__ not in need_return_capacity:
            raise RuntimeError("This decorator only for DynamoDB methods")
        kwargs.update({'ReturnConsumedCapacity': 'TOTAL'})

        for retries in range(max_retries):
            try:
                result = func(*args, **kwargs)
                logger.info(f'{func.__name__}:: SUCCESS')
                return result

            except ClientError as e:
                error_code = get_error_code(e)
                if error_code in RETRY_EXCEPTIONS:
                    logger.warning(f'{func.__name__}:: {error_code}, retry {retries + 1} of {max_retries}')
                    time.sleep(min(timeout_seed * 2 ** retries, 5))
                    continue
                if error_code in CONDITIONAL_EXCEPTIONS:
                    logger.debug(f'{func.__name__}:: {error_code}')
                else:
                    log_exception(e, msg=f'Got exception while trying to {func.__name__}: ')
                raise
            except Exception as e:
                log_exception(e, msg=f'Got exception while trying to {func.__name__}: ')
                raise

        raise exceptions.NumberOfRetriesExceeded(
            f"MaxNumber={max_retries} of DB retries has exceeded"
        )

    return wrapper


def get_error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', '')


def is_conditional_check_failed(error: ClientError) -> bool:
    return get_error_code(error) == 'ConditionalCheckFailedException'


def is_transaction_canceled(error: ClientError) -> bool:
    return get_error_code(error) == 'TransactionCanceledException'


def get_table(table_name: str) -> boto3.session.Session.resource:
    if table_name not in _TABLES:
        if os.environ.get('ENDPOINT_URL'):
            gl_table = boto3.resource('dynamodb', endpoint_url=os.environ.get('ENDPOINT_URL')).Table(table_name)
        else:
            gl_table = boto3.resource('dynamodb', config=aws_config_ddb).Table(table_name)

        gl_table.put_item = exp_db_backoff(gl_table.put_item)
        gl_table.get_item = exp_db_backoff(gl_table.get_item)
        gl_table.update_item = exp_db_backoff(gl_table.update_item)
        gl_table.delete_item = exp_db_backoff(gl_table.delete_item)
        gl_table.query = exp_db_backoff(gl_table.query)
        _TABLES[table_name] = gl_table

    return _TABLES[table_name]


def reset_tables():
    _TABLES.clear()


def get_gen_table():
    return get_table(os.environ.get('GEN_TABLE_NAME'))


def put_db_record(item: dict, condition_expression: Optional[str] = None, table=get_gen_table):
    kwargs = {'Item': item}
    if condition_expression:
        kwargs.update({'ConditionExpression': condition_expression})
    table().put_item(**kwargs)


def update_db_record(key: dict, update_body: dict, allowed_attrs_to_update: list,
                     allowed_attrs_to_delete: list, condition_expression: Optional[str] = None,
                     condition_values: Optional[Dict] = None, table=get_gen_table):
    data.substitute_keys(dict_to_process=update_body, base_keys=substitute_keys.to_db)
    set_expr, expr_attr_values, remove_expr = generate_update_expression(
        update_body=update_body,
        allowed_attrs_to_update=allowed_attrs_to_update,
        allowed_attrs_to_delete=allowed_attrs_to_delete
    )
    update_item_dict = {"Key": key, "ReturnValues": "UPDATED_NEW", }
    if condition_expression:
        update_item_dict.update({"ConditionExpression": condition_expression})

    set_response = None
    if set_expr:
        set_item_dict = {
            **update_item_dict,
            "UpdateExpression": set_expr,
            "ExpressionAttributeValues": {**expr_attr_values, **(condition_values or {})}
        }
        set_response = table().update_item(**set_item_dict)

    remove_response = None
    if remove_expr:
        remove_item_dict = {
            **update_item_dict,
            "UpdateExpression": remove_expr
        }
        if condition_values:
            remove_item_dict.update({"ExpressionAttributeValues": condition_values})
        remove_response = table().update_item(**remove_item_dict)

    return set_response, remove_response


def update_db_item(key: dict, update_expression: str, expr_attr_values: dict,
                   condition_expression: Optional[str] = None, expr_attr_names: Optional[dict] = None,
                   table=get_gen_table):
    kwargs = {
        'Key': key,
        'UpdateExpression': update_expression,
        'ExpressionAttributeValues': expr_attr_values,
        'ReturnValues': 'ALL_NEW'
    }
    if condition_expression:
        kwargs.update({'ConditionExpression': condition_expression})
    if expr_attr_names:
        kwargs.update({'ExpressionAttributeNames': expr_attr_names})
    return table().update_item(**kwargs).get('Attributes', {})


def generate_update_expression(update_body: dict, allowed_attrs_to_update: list, allowed_attrs_to_delete: list):
    """
    Generate expressions to update and delete attributes.
    if a key of update_body is empty - the attribute is deleted, else - attribute is updated
    """
    expr_attr_values = {}
    set_expr = 'SET '
    remove_expr = 'REMOVE '
    return_value = [None, None, None]
    for field in allowed_attrs_to_update:
        field_value = update_body.get(field, None)
        if field_value is not None:
            # if field is in update_body but is equal to empty string, list etc. - delete field
            if field_value in ['', [], {}] and field in allowed_attrs_to_delete:
                remove_expr += f'{field}, '
            else:
                # if field is in update_body and has a real value - update field
                expr_attr_values[f':{field}'] = update_body.get(field)
                set_expr += f'{field}=:{field}, '
        else:
            continue

    if set_expr != 'SET ':
        return_value[0] = set_expr[:-2]
        return_value[1] = expr_attr_values

    if remove_expr != 'REMOVE ':
        return_value[2] = remove_expr[:-2]

    return return_value


def get_db_item(partkey, sortkey, consistent_read=False, table=get_gen_table):
    result = table().get_item(
        Key={
            'partkey': partkey,
            'sortkey': sortkey
        },
        ConsistentRead=consistent_read
    )

    if result.__contains__('Item'):
        return result['Item']
    else:
        logger.warning(f"get_db_item ::: record partkey={partkey} sortkey={sortkey} not found")
        raise exceptions.RecordNotFound(f'record partkey={partkey} sortkey={sortkey} not found')


def find_db_item(partkey, sortkey, consistent_read=False, table=get_gen_table) -> Optional[Dict]:
    try:
        return get_db_item(partkey, sortkey, consistent_read=consistent_read, table=table)
    except exceptions.RecordNotFound:
        return None


def query_items_paginated(
        key_condition_expression,
        filter_expression=None,
        projection_expression=None,
        table=get_gen_table,
        index_name=None,
        expr_attr_names=None,
        limit=None,
        start_key=None,
        consistent_read=False
):
    kwargs = {'KeyConditionExpression': key_condition_expression}
    if filter_expression:
        kwargs.update({'FilterExpression': filter_expression})

    if projection_expression:
        kwargs.update({'ProjectionExpression': projection_expression})

    if expr_attr_names:
        kwargs.update({'ExpressionAttributeNames': expr_attr_names})

    if limit:
        kwargs.update({'Limit': int(limit)})

    if index_name:
        kwargs.update({'IndexName': index_name})

    if start_key:
        kwargs.update({'ExclusiveStartKey': start_key})

    if consistent_read:
        kwargs.update({'ConsistentRead': True})

    resp = table().query(**kwargs)
    return resp['Items'], resp.get('LastEvaluatedKey')


def query_items_paged(key_condition_expression, filter_expression=None, projection_expression=None,
                      table=get_gen_table, index_name=None, expr_attr_names=None, consistent_read=False):
    """ This method shall be used whenever you think the query will
        return more than 1mb of data at once"""
    all_items = []
    items, last_evaluated_key = query_items_paginated(
        key_condition_expression,
        filter_expression=filter_expression,
        projection_expression=projection_expression,
        table=table,
        index_name=index_name,
        expr_attr_names=expr_attr_names,
        consistent_read=consistent_read
    )
    all_items.extend(items)

    while last_evaluated_key is not None:
        items, last_evaluated_key = query_items_paginated(
            key_condition_expression,
            filter_expression=filter_expression,
            projection_expression=projection_expression,
            table=table,
            index_name=index_name,
            expr_attr_names=expr_attr_names,
            start_key=last_evaluated_key,
            consistent_read=consistent_read
        )
        all_items.extend(items)

    return all_items


def put_transact_item(item: dict, condition_expression: Optional[str] = None, table=get_gen_table) -> Dict:
    put = {'TableName': table().name, 'Item': item}
    if condition_expression:
        put['ConditionExpression'] = condition_expression
    return {'Put': put}


def update_transact_item(key: dict, update_expression: str, expr_attr_values: dict,
                         condition_expression: Optional[str] = None, expr_attr_names: Optional[dict] = None,
                         table=get_gen_table) -> Dict:
    update = {
        'TableName': table().name,
        'Key': key,
        'UpdateExpression': update_expression,
        'ExpressionAttributeValues': expr_attr_values
    }
    if condition_expression:
        update['ConditionExpression'] = condition_expression
    if expr_attr_names:
        update['ExpressionAttributeNames'] = expr_attr_names
    return {'Update': update}


def transact_write_items(transact_items: List[Dict], table=get_gen_table):
    """
    All-or-nothing write of up to 100 items.
    The resource client serializes python types, so items are built with
    put_transact_item / update_transact_item.
    """
    client = table().meta.client
    return exp_db_backoff(client.transact_write_items)(TransactItems=transact_items)
