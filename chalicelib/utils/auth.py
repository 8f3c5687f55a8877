import functools
from uuid import uuid4

from chalice.app import Request

from chalicelib.constants import keys_structure
from chalicelib.constants.constants import get_company_id
from chalicelib.utils import exceptions as utils_exceptions, db as utils_db
from chalicelib.utils.app import error_response
from chalicelib.utils.logger import log_request, logger


def get_company_id_by_request(request: Request):
    # single tenant deployment, the company is configured per stage
    return get_company_id()


def get_user_role_and_permissions(company_id, user_id):
    try:
        user_item = utils_db.get_db_item(
            partkey=keys_structure.users_pk.format(company_id=company_id),
            sortkey=keys_structure.users_sk.format(user_id=user_id)
        )
    except utils_exceptions.RecordNotFound:
        raise utils_exceptions.NotAuthorizedException(f'Unknown user {user_id}')
    return user_item.get('role'), user_item.get('permissions_', {})


def _set_request_id(request: Request):
    aws_request_id = getattr(request.lambda_context, 'aws_request_id', None) or str(uuid4())
    logger.current_request_id = aws_request_id.split('-')[-1]


def _get_auth_result(request: Request):
    _set_request_id(request)
    log_request(request)
    # Todo: replace the header token with cognito id_token verification
    user_id = (request.headers or {}).get('authorization')
    if not user_id:
        raise utils_exceptions.NotAuthorizedException('Error occurred in authorization process')
    company_id = get_company_id_by_request(request)
    user_role, permissions = get_user_role_and_permissions(company_id, user_id)
    auth_result = {'user_id': user_id, 'role': user_role, 'company_id': company_id, 'permissions': permissions}
    setattr(request, 'auth_result', auth_result)
    return auth_result


def authenticate(func):
    """
    Wrapper for functions which require user's authentication
    """

    @functools.wraps(func)
    def result_auth(*args, **kwargs):
        try:
            _get_auth_result(args[0])
        except Exception as err:
            logger.error(f"authenticate ::: {str(err)}")
            return error_response(err, msg=f'{func.__name__}', status_code=401)
        result = func(*args, **kwargs)
        logger.info(f'authenticate ::: SUCCESS, func.__name__ {func.__name__}')
        return result

    return result_auth


def ensure_role(request: Request, *roles):
    role = request.auth_result.get('role')
    if role not in roles:
        raise utils_exceptions.AccessDenied(f"Role {role} don't have permissions to access this resource")


def ensure_restaurant_permission(request: Request, restaurant_id: str):
    """
    restaurant manager needs permissions to manage the restaurant,
    company admin can manage any restaurant
    """
    auth_result = request.auth_result
    if auth_result.get('role') == 'company_admin':
        return
    if auth_result.get('role') != 'restaurant_manager' or \
            restaurant_id not in auth_result.get('permissions', {}).get('restaurants', {}):
        raise utils_exceptions.AccessDenied("You don't have permissions to manage this restaurant")
