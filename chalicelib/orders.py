from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Tuple, List, Dict, Optional, Sequence
from uuid import uuid4

from boto3.dynamodb.conditions import Key, Attr
from botocore.exceptions import ClientError
from chalice import Response

from chalicelib import order_status
from chalicelib.accounts import Ledger, calculate_settlement
from chalicelib.base_class_entity import EntityBase
from chalicelib.constants import keys_structure
from chalicelib.constants.constants import get_placeholder_distance_km, get_preparation_minutes
from chalicelib.constants.courier_types import CourierType, get_courier_speed, parse_courier_type
from chalicelib.constants.status_codes import http200
from chalicelib.discovery import DiscoveryService
from chalicelib.geocoding import Address
from chalicelib.menu_items import get_price
from chalicelib.order_status import OrderStatus
from chalicelib.restaurants import Restaurant
from chalicelib.users import User
from chalicelib.utils import auth as utils_auth, \
    data as utils_data, \
    db as utils_db, \
    app as utils_app, \
    notifications as utils_notifications, \
    exceptions
from chalicelib.utils.data import to_db_number
from chalicelib.utils.distance import format_distance
from chalicelib.utils.logger import logger


@dataclass(frozen=True)
class LineItem:
    """ Menu item as it was ordered, the price never follows later menu changes """
    menu_item_id: str
    title: str
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_record(self) -> Dict:
        return {
            'menu_item_id': self.menu_item_id,
            'title': self.title,
            'quantity': self.quantity,
            'unit_price': self.unit_price
        }

    @classmethod
    def from_record(cls, record: Dict) -> 'LineItem':
        return cls(record['menu_item_id'], record.get('title'), int(record['quantity']),
                   Decimal(record['unit_price']))


@dataclass(frozen=True)
class DeliveryEstimate:
    distance_km: float
    courier_type: CourierType
    minutes: int
    estimated_delivery: str
    placeholder_distance: bool = False


def estimate_delivery(distance_km: Optional[float], courier_type, start: Optional[datetime] = None) -> DeliveryEstimate:
    """
    preparation time + distance / courier speed,
    the placeholder distance is used when the real one is unknown
    """
    courier = parse_courier_type(courier_type)
    placeholder = distance_km is None
    if placeholder:
        distance_km = get_placeholder_distance_km()
    total_minutes = get_preparation_minutes() + distance_km / get_courier_speed(courier) * 60
    start = start or datetime.now()
    return DeliveryEstimate(
        distance_km=distance_km,
        courier_type=courier,
        minutes=round(total_minutes),
        estimated_delivery=(start + timedelta(minutes=total_minutes)).isoformat(timespec='seconds'),
        placeholder_distance=placeholder
    )


class Order(EntityBase):
    pk = keys_structure.orders_pk
    sk = keys_structure.orders_sk

    required_immutable_fields_validation = {
        'id_': lambda x: isinstance(x, str),
        'user_id': lambda x: isinstance(x, str) and len(x) > 0,
        'restaurant_id': lambda x: isinstance(x, str) and len(x) > 0,
        'items': lambda x: isinstance(x, list) and len(x) > 0,
        'subtotal': lambda x: isinstance(x, Decimal) and x >= 0,
        'service_fee': lambda x: isinstance(x, Decimal) and x >= 0,
        'amount': lambda x: isinstance(x, Decimal) and x >= 0,
        'estimated_delivery': lambda x: isinstance(x, str),
        'courier_type': lambda x: isinstance(x, str),
        'date_created': lambda x: isinstance(x, str)
    }

    required_mutable_fields_validation = {
        'status_': lambda x: x in OrderStatus.__members__,
        'history': lambda x: isinstance(x, list),
        "date_updated": lambda x: isinstance(x, str),
        "updated_by": lambda x: isinstance(x, str)
    }

    optional_fields_validation = {
        'delivery_distance_km': lambda x: isinstance(x, Decimal),
        'delivery_minutes': lambda x: isinstance(x, int)
    }

    def __init__(self, company_id, id_, **kwargs):
        EntityBase.__init__(self, company_id, id_)

        self.request_data = kwargs.get('request_data', {})

        self.user_id: str = kwargs.get('user_id')
        self.restaurant_id: str = kwargs.get('restaurant_id')
        self.items: List[Dict] = kwargs.get('items', [])
        self.subtotal: Decimal = kwargs.get('subtotal')
        self.service_fee: Decimal = kwargs.get('service_fee')
        self.amount: Decimal = kwargs.get('amount')
        self.status_: str = kwargs.get('status_', OrderStatus.PENDING.value)
        self.date_created: str = kwargs.get('date_created') or datetime.now().isoformat(timespec='seconds')
        self.history: List[Dict] = kwargs.get('history') or [{'status': self.status_, 'date': self.date_created}]
        self.estimated_delivery: str = kwargs.get('estimated_delivery')
        self.delivery_minutes: int = int(kwargs['delivery_minutes']) if \
            kwargs.get('delivery_minutes') is not None else None
        self.delivery_distance_km: Decimal = kwargs.get('delivery_distance_km')
        self.courier_type: str = kwargs.get('courier_type')
        self.date_updated: str = kwargs.get('date_updated') or self.date_created
        self.updated_by: str = kwargs.get('updated_by') or self.user_id
        self.record_type = 'order'

    @classmethod
    def find_by_id(cls, company_id, order_id, consistent_read=False) -> Optional['Order']:
        record = utils_db.find_db_item(keys_structure.orders_pk.format(company_id=company_id),
                                       keys_structure.orders_sk.format(order_id=order_id),
                                       consistent_read=consistent_read)
        return cls(**record) if record else None

    @property
    def line_items(self) -> Tuple[LineItem, ...]:
        return tuple(LineItem.from_record(item) for item in self.items)

    def _get_pk_sk(self) -> Tuple[str, str]:
        return self.pk.format(company_id=self.company_id), self.sk.format(order_id=self.id_)

    def _to_dict(self):
        return {
            'id_': self.id_,
            'user_id': self.user_id,
            'restaurant_id': self.restaurant_id,
            'items': self.items,
            'subtotal': self.subtotal,
            'service_fee': self.service_fee,
            'amount': self.amount,
            'status_': self.status_,
            'history': self.history,
            'estimated_delivery': self.estimated_delivery,
            'delivery_minutes': self.delivery_minutes,
            'delivery_distance_km': self.delivery_distance_km,
            'courier_type': self.courier_type,
            'date_created': self.date_created,
            'date_updated': self.date_updated,
            'updated_by': self.updated_by
        }

    def _to_ui(self):
        item = EntityBase._to_ui(self)
        distance = self.delivery_distance_km
        item['delivery_distance_text'] = format_distance(float(distance) if distance is not None else None)
        return item


def _merge_quantities(items: Sequence[Tuple[str, int]]) -> Dict[str, int]:
    quantities: Dict[str, int] = {}
    for menu_item_id, quantity in items:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise exceptions.ValidationException(f'Quantity of menu item {menu_item_id} must be a positive integer, '
                                                 f'got {quantity!r}')
        quantities[menu_item_id] = quantities.get(menu_item_id, 0) + quantity
    return quantities


class OrderEngine:
    def __init__(self, company_id, ledger: Optional[Ledger] = None, discovery: Optional[DiscoveryService] = None):
        self.company_id = company_id
        self.ledger = ledger or Ledger(company_id)
        self.discovery = discovery or DiscoveryService(company_id)

    def create_order(self, customer_id: str, restaurant_id: str, items: Sequence[Tuple[str, int]],
                     delivery_address: Optional[Address] = None) -> Order:
        """
        Places an order and settles it in one ledger transaction:
        customer pays the total, restaurant owner gets the subtotal, platform gets the fee.
        The order record is written by the same transaction, so it exists iff the funds moved
        """
        if not items:
            raise exceptions.EmptyOrderError('Order must contain at least one item')
        quantities = _merge_quantities(items)

        restaurant = Restaurant.init_get_by_id(self.company_id, restaurant_id)
        if restaurant.archived:
            raise exceptions.RestaurantNotFound(f'Restaurant {restaurant_id} not found')
        courier_type = parse_courier_type(restaurant.courier_type)

        line_items = []
        for menu_item_id, quantity in quantities.items():
            menu_item, price = get_price(self.company_id, restaurant_id, menu_item_id)
            line_items.append(LineItem(menu_item_id, menu_item.title, quantity, price))
        subtotal = sum((line.line_total for line in line_items), Decimal('0.00'))
        settlement = calculate_settlement(subtotal)

        now = datetime.now()
        estimate = estimate_delivery(self._delivery_distance(restaurant, customer_id, delivery_address),
                                     courier_type, start=now)

        order = Order(
            company_id=self.company_id,
            id_=str(uuid4()),
            user_id=customer_id,
            restaurant_id=restaurant_id,
            items=[line.to_record() for line in line_items],
            subtotal=settlement.subtotal,
            service_fee=settlement.service_fee,
            amount=settlement.total,
            status_=OrderStatus.PENDING.value,
            date_created=now.isoformat(timespec='seconds'),
            estimated_delivery=estimate.estimated_delivery,
            delivery_minutes=estimate.minutes,
            delivery_distance_km=to_db_number(round(estimate.distance_km, 3)),
            courier_type=estimate.courier_type.value
        )
        order_item = utils_db.put_transact_item(order._build_db_record(),
                                                condition_expression='attribute_not_exists(partkey)')

        try:
            self.ledger.settle_order(customer_id, restaurant.owner_id, settlement, reference=order.id_,
                                     extra_items=[order_item])
        except exceptions.InvariantViolation as error:
            logger.error(f'create_order ::: ledger invariant violated for order {order.id_}: {error}')
            raise exceptions.OrderNotCompleted('Order could not be completed') from error

        logger.info(f'create_order ::: order {order.id_} created, {settlement=}, {estimate=}')
        return order

    def _delivery_distance(self, restaurant: Restaurant, customer_id: str,
                           delivery_address: Optional[Address]) -> Optional[float]:
        if delivery_address is None:
            customer = User.find_by_id(self.company_id, customer_id)
            delivery_address = customer.get_address() if customer else None
        try:
            return self.discovery.distance_between(restaurant, delivery_address)
        except (exceptions.GeocodingError, exceptions.InvalidCoordinateError, ClientError) as error:
            logger.warning(f'_delivery_distance ::: using placeholder distance for restaurant {restaurant.id_}, '
                           f'{error=}')
            return None

    def ensure_restaurant_owns_order(self, order_id: str, restaurant_id: str, consistent_read=True) -> Order:
        order = Order.find_by_id(self.company_id, order_id, consistent_read=consistent_read)
        if order is None or order.restaurant_id != restaurant_id:
            logger.warning(f'ensure_restaurant_owns_order ::: order {order_id} is not an order of '
                           f'restaurant {restaurant_id}')
            raise exceptions.OrderNotFound(f'Order {order_id} not found')
        return order

    def advance_status(self, order_id: str, target_status, acting_restaurant_id: str,
                       updated_by: Optional[str] = None) -> Order:
        order = self.ensure_restaurant_owns_order(order_id, acting_restaurant_id)
        for attempt in (1, 2):
            target = order_status.validate_transition(order.status_, target_status)
            now = datetime.now().isoformat(timespec='seconds')
            try:
                attributes = utils_db.update_db_item(
                    key=order._get_key(),
                    update_expression='SET #status = :status, #history = list_append(#history, :entry), '
                                      'date_updated = :date, updated_by = :updated_by',
                    expr_attr_values={
                        ':status': target.value,
                        ':entry': [{'status': target.value, 'date': now}],
                        ':date': now,
                        ':updated_by': updated_by or acting_restaurant_id,
                        ':expected': order.status_
                    },
                    condition_expression='attribute_exists(partkey) AND #status = :expected',
                    expr_attr_names={'#status': 'status_', '#history': 'history'}
                )
            except ClientError as error:
                if not utils_db.is_conditional_check_failed(error):
                    raise
                logger.warning(f'advance_status ::: order {order_id} changed concurrently, attempt {attempt}')
                order = self.ensure_restaurant_owns_order(order_id, acting_restaurant_id)
                continue
            logger.info(f'advance_status ::: order {order_id} moved from {order.status_} to {target.value}')
            return Order(**attributes)

        raise exceptions.InvalidTransitionError(
            f'Order {order_id} status is being changed concurrently, please retry',
            current=order.status_, target=target.value
        )

    def get_order(self, order_id: str, user_id: Optional[str] = None) -> Order:
        order = Order.find_by_id(self.company_id, order_id)
        if order is None or (user_id is not None and order.user_id != user_id):
            raise exceptions.OrderNotFound(f'Order {order_id} not found')
        return order

    def list_customer_orders(self, user_id: str) -> List[Order]:
        records = utils_db.query_items_paged(
            key_condition_expression=Key('partkey').eq(Order.pk.format(company_id=self.company_id)),
            filter_expression=Attr('user_id').eq(user_id)
        )
        return sorted((Order(**record) for record in records), key=lambda order: order.date_created, reverse=True)

    def list_restaurant_orders(self, restaurant_id: str, status=None) -> List[Order]:
        filter_expression = Attr('restaurant_id').eq(restaurant_id)
        if status:
            filter_expression = filter_expression & Attr('status_').eq(order_status.parse_status(status).value)
        records = utils_db.query_items_paged(
            key_condition_expression=Key('partkey').eq(Order.pk.format(company_id=self.company_id)),
            filter_expression=filter_expression
        )
        return sorted((Order(**record) for record in records), key=lambda order: order.date_created, reverse=True)


def _parse_order_items(raw_items) -> List[Tuple[str, int]]:
    if not isinstance(raw_items, list):
        raise exceptions.ValidationException('items must be a list of {menu_item_id, quantity}')
    items = []
    for raw_item in raw_items:
        if not isinstance(raw_item, dict) or not raw_item.get('menu_item_id'):
            raise exceptions.ValidationException(f'Order item {raw_item} must contain menu_item_id')
        items.append((raw_item['menu_item_id'], raw_item.get('quantity', 1)))
    return items


@utils_app.log_start_finish
@utils_auth.authenticate
@utils_app.request_exception_handler
def endpoint_create_order(request):
    auth_result = request.auth_result
    request_body = utils_data.parse_raw_body(request)
    if not request_body.get('restaurant_id'):
        raise exceptions.ValidationException('restaurant_id must be provided')
    order = OrderEngine(auth_result['company_id']).create_order(
        customer_id=auth_result['user_id'],
        restaurant_id=request_body['restaurant_id'],
        items=_parse_order_items(request_body.get('items', [])),
        delivery_address=Address.from_record(request_body.get('delivery_address') or {})
    )
    return Response(status_code=http200, body=order.to_ui())


@utils_app.log_start_finish
@utils_auth.authenticate
@utils_app.request_exception_handler
def endpoint_get_orders(request):
    """
    user can get own orders
    """
    auth_result = request.auth_result
    orders = OrderEngine(auth_result['company_id']).list_customer_orders(auth_result['user_id'])
    return Response(status_code=http200, body={"orders": [order.to_ui() for order in orders]})


@utils_app.log_start_finish
@utils_auth.authenticate
@utils_app.request_exception_handler
def endpoint_get_order(request, order_id):
    """
    user can get details only of own orders, admin of any order
    """
    auth_result = request.auth_result
    user_id = None if auth_result['role'] == 'company_admin' else auth_result['user_id']
    order = OrderEngine(auth_result['company_id']).get_order(order_id, user_id=user_id)
    return Response(status_code=http200, body=order.to_ui())


@utils_app.log_start_finish
@utils_auth.authenticate
@utils_app.request_exception_handler
def endpoint_get_restaurant_orders(request, restaurant_id):
    """
    restaurant manager can get restaurant's orders (needs permissions to manage the restaurant)
    admin can get restaurant's orders by restaurant_id
    """
    utils_auth.ensure_restaurant_permission(request, restaurant_id)
    status = (request.query_params or {}).get('status')
    orders = OrderEngine(request.auth_result['company_id']).list_restaurant_orders(restaurant_id, status=status)
    return Response(status_code=http200, body={"orders": [order.to_ui() for order in orders]})


@utils_app.log_start_finish
@utils_auth.authenticate
@utils_app.request_exception_handler
def endpoint_update_status(request, restaurant_id, order_id):
    """
    restaurant manager operation
    """
    utils_auth.ensure_restaurant_permission(request, restaurant_id)
    request_body = utils_data.parse_raw_body(request)
    if not request_body.get('status'):
        raise exceptions.ValidationException('status must be provided')
    order = OrderEngine(request.auth_result['company_id']).advance_status(
        order_id, request_body['status'], acting_restaurant_id=restaurant_id,
        updated_by=request.auth_result['user_id']
    )
    return Response(status_code=http200, body=order.to_ui())


@utils_app.log_start_finish
def db_trigger_order_record(record_old: dict, record_new: dict, event_id: str, event_name: str):
    logger.info(f'db_trigger_order_record ::: order_record={record_new}, {event_id=}, {event_name=}')
    if event_name.lower() != 'modify' or record_old.get('status_') == record_new.get('status_'):
        return None
    return utils_notifications.publish_event('order_status_changed', {
        'company_id': record_new.get('company_id'),
        'order_id': record_new.get('id_'),
        'user_id': record_new.get('user_id'),
        'restaurant_id': record_new.get('restaurant_id'),
        'previous_status': record_old.get('status_'),
        'status': record_new.get('status_'),
        'estimated_delivery': record_new.get('estimated_delivery')
    })
