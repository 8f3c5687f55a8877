from datetime import datetime
from decimal import Decimal
from typing import List, Dict, Tuple
from uuid import uuid4

from boto3.dynamodb.conditions import Attr, Key
from chalice import Response

from chalicelib.base_class_entity import EntityBase
from chalicelib.constants import keys_structure
from chalicelib.constants.status_codes import http200
from chalicelib.utils import auth as utils_auth, data as utils_data, exceptions, db as utils_db, app as utils_app
from chalicelib.utils.auth import get_company_id_by_request
from chalicelib.utils.data import to_money
from chalicelib.utils.logger import logger


class MenuItem(EntityBase):
    pk = keys_structure.menu_items_pk
    sk = keys_structure.menu_items_sk

    required_immutable_fields_validation = {
        'id_': lambda x: isinstance(x, str),
        'created_by': lambda x: isinstance(x, str),
        "date_created": lambda x: isinstance(x, str)
    }

    required_mutable_fields_validation = {
        'title': lambda x: isinstance(x, str) and len(x) > 0,
        'price': lambda x: isinstance(x, Decimal) and x >= 0,
        'is_available': lambda x: isinstance(x, bool),
        "date_updated": lambda x: isinstance(x, str),
        "updated_by": lambda x: isinstance(x, str),
        "archived": lambda x: isinstance(x, bool)
    }

    optional_fields_validation = {
        'category': lambda x: isinstance(x, str),
        'description': lambda x: isinstance(x, str)
    }

    def __init__(self, company_id, id_, restaurant_id, **kwargs):
        EntityBase.__init__(self, company_id, id_)

        self.request_data = kwargs.get('request_data', {})

        self.restaurant_id: str = restaurant_id
        self.title: str = kwargs.get('title')
        self.category: str = kwargs.get('category')
        self.description: str = kwargs.get('description')
        self.price: Decimal = to_money(kwargs.get('price')) if \
            type(kwargs.get('price')) in [int, float, Decimal] else None
        self.is_available: bool = kwargs.get('is_available', True)
        self.created_by: str = kwargs.get('created_by') or self.request_data.get('auth_result', {}).get('user_id')
        self.updated_by: str = kwargs.get('updated_by') or self.request_data.get('auth_result', {}).get('user_id')
        self.date_created: str = kwargs.get('date_created') or datetime.now().isoformat(timespec="seconds")
        self.date_updated: str = kwargs.get('date_updated') or datetime.now().isoformat(timespec="seconds")
        self.archived: bool = kwargs.get('archived', False)
        self.record_type = 'menu_item'

    @classmethod
    def init_get_by_id(cls, company_id, menu_item_id, restaurant_id):
        logger.info("init_get_by_id ::: started")
        c = cls(company_id=company_id, id_=menu_item_id, restaurant_id=restaurant_id)
        try:
            c.__init__(**c._get_db_item())
        except exceptions.RecordNotFound:
            raise exceptions.MenuItemNotFound(f'Menu item {menu_item_id} not found in restaurant {restaurant_id}')
        return c

    @classmethod
    def get_all(cls, company_id, restaurant_id) -> List['MenuItem']:
        menu_item_db_records: List[Dict] = utils_db.query_items_paged(
            Key('partkey').eq(keys_structure.menu_items_pk.format(company_id=company_id, restaurant_id=restaurant_id)),
            filter_expression=Attr('archived').eq(False)
        )
        return [cls(**record) for record in menu_item_db_records]

    def _get_pk_sk(self) -> Tuple[str, str]:
        return self.pk.format(company_id=self.company_id, restaurant_id=self.restaurant_id), \
            self.sk.format(menu_item_id=self.id_)

    def is_available_right_now(self) -> bool:
        return self.is_available and not self.archived

    def _to_dict(self):
        return {
            'id_': self.id_,
            'restaurant_id': self.restaurant_id,
            'title': self.title,
            'category': self.category,
            'description': self.description,
            'price': self.price,
            'is_available': self.is_available,
            "date_created": self.date_created,
            "date_updated": self.date_updated,
            'created_by': self.created_by,
            'updated_by': self.updated_by,
            "archived": self.archived
        }


def get_price(company_id, restaurant_id, menu_item_id) -> Tuple[MenuItem, Decimal]:
    """
    Authoritative unit price of an orderable menu item
    :return:
    menu item, its current price
    """
    menu_item = MenuItem.init_get_by_id(company_id, menu_item_id, restaurant_id)
    if not menu_item.is_available_right_now():
        raise exceptions.SomeItemsAreNotAvailable(f'Menu item {menu_item.title} is not available right now',
                                                  menu_item_id=menu_item_id)
    return menu_item, menu_item.price


@utils_app.log_start_finish
@utils_app.request_exception_handler
def endpoint_get_menu_items(request, restaurant_id) -> Response:
    company_id = get_company_id_by_request(request)
    menu_items: List[Dict] = [item.to_ui() for item in MenuItem.get_all(company_id, restaurant_id)]
    logger.info(f"endpoint_get_menu_items ::: returning menu items={[item['id'] for item in menu_items]}")
    return Response(status_code=http200, body=menu_items)


@utils_app.log_start_finish
@utils_auth.authenticate
@utils_app.request_exception_handler
def endpoint_create_menu_item(request, restaurant_id) -> Response:
    utils_auth.ensure_restaurant_permission(request, restaurant_id)
    request_body = utils_data.parse_raw_body(request)
    for field in ('id', 'id_', 'restaurant_id'):
        request_body.pop(field, None)
    menu_item = MenuItem(
        company_id=request.auth_result['company_id'],
        id_=str(uuid4()),
        restaurant_id=restaurant_id,
        request_data={'auth_result': request.auth_result},
        **request_body
    )
    menu_item._create_db_record()
    return Response(status_code=http200, body={'message': 'Menu item successfully created', 'id': menu_item.id_})
