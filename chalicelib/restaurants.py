from datetime import datetime
from decimal import Decimal
from typing import Tuple, List, Dict, Optional
from uuid import uuid4

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError
from chalice import Response

from chalicelib.base_class_entity import EntityBase
from chalicelib.constants import keys_structure
from chalicelib.constants.courier_types import DEFAULT_COURIER_TYPE, parse_courier_type
from chalicelib.constants.status_codes import http200
from chalicelib.geocoding import Address
from chalicelib.utils import auth as utils_auth, data as utils_data, exceptions, db as utils_db, app as utils_app
from chalicelib.utils.data import to_db_number
from chalicelib.utils.distance import Coordinates
from chalicelib.utils.logger import logger


class Restaurant(EntityBase):
    pk = keys_structure.restaurants_pk
    sk = keys_structure.restaurants_sk

    required_immutable_fields_validation = {
        'id_': lambda x: isinstance(x, str),
        'owner_id': lambda x: isinstance(x, str) and len(x) > 0,
        'created_by': lambda x: isinstance(x, str),
        "date_created": lambda x: isinstance(x, str)
    }

    required_mutable_fields_validation = {
        'title': lambda x: isinstance(x, str) and len(x) > 0,
        'city': lambda x: isinstance(x, str) and len(x) > 0,
        'street_name': lambda x: isinstance(x, str) and len(x) > 0,
        'block_number': lambda x: isinstance(x, str) and len(x) > 0,
        'courier_type': lambda x: isinstance(x, str),
        "date_updated": lambda x: isinstance(x, str),
        "updated_by": lambda x: isinstance(x, str),
        "archived": lambda x: isinstance(x, bool)
    }

    optional_fields_validation = {
        'description': lambda x: isinstance(x, str),
        'postal_code': lambda x: isinstance(x, str),
        'cuisine': lambda x: isinstance(x, list)
    }

    def __init__(self, company_id, id_, **kwargs):
        EntityBase.__init__(self, company_id, id_)

        self.request_data = kwargs.get('request_data', {})

        self.owner_id: str = kwargs.get('owner_id')
        self.title: str = kwargs.get('title')
        self.description: str = kwargs.get('description')
        self.cuisine: list = kwargs.get('cuisine', [])
        self.city: str = kwargs.get('city')
        self.street_name: str = kwargs.get('street_name')
        self.block_number: str = str(kwargs['block_number']) if kwargs.get('block_number') is not None else None
        self.postal_code: str = str(kwargs['postal_code']) if kwargs.get('postal_code') is not None else None
        self.courier_type: str = str(kwargs.get('courier_type') or DEFAULT_COURIER_TYPE.value).upper()
        # derived from reviews, written only by the rating aggregator
        self.rating: Optional[Decimal] = kwargs.get('rating')
        self.rating_count: int = int(kwargs.get('rating_count', 0))
        # geocoding cache, once set it is never re-resolved
        self.latitude: Optional[Decimal] = kwargs.get('latitude')
        self.longitude: Optional[Decimal] = kwargs.get('longitude')
        self.created_by: str = kwargs.get('created_by') or self.request_data.get('auth_result', {}).get('user_id')
        self.updated_by: str = kwargs.get('updated_by') or self.request_data.get('auth_result', {}).get('user_id')
        self.date_created: str = kwargs.get('date_created') or datetime.now().isoformat(timespec="seconds")
        self.date_updated: str = kwargs.get('date_updated') or datetime.now().isoformat(timespec="seconds")
        self.archived: bool = kwargs.get('archived', False)
        self.record_type = 'restaurant'

    @classmethod
    def init_get_by_id(cls, company_id, restaurant_id, consistent_read=False):
        logger.info("init_get_by_id ::: started")
        c = cls(company_id, restaurant_id)
        try:
            c.__init__(**c._get_db_item(consistent_read=consistent_read))
        except exceptions.RecordNotFound:
            raise exceptions.RestaurantNotFound(f'Restaurant {restaurant_id} not found')
        return c

    @classmethod
    def get_all(cls, company_id) -> List['Restaurant']:
        restaurant_db_records: List[Dict] = utils_db.query_items_paged(
            Key('partkey').eq(keys_structure.restaurants_pk.format(company_id=company_id)),
            filter_expression=Attr('archived').eq(False)
        )
        return [cls(**record) for record in restaurant_db_records]

    def _get_pk_sk(self) -> Tuple[str, str]:
        return self.pk.format(company_id=self.company_id), self.sk.format(restaurant_id=self.id_)

    def _to_dict(self):
        return {
            'id_': self.id_,
            'owner_id': self.owner_id,
            'title': self.title,
            'description': self.description,
            'cuisine': self.cuisine,
            'city': self.city,
            'street_name': self.street_name,
            'block_number': self.block_number,
            'postal_code': self.postal_code,
            'courier_type': self.courier_type,
            'rating': self.rating,
            'rating_count': self.rating_count,
            'latitude': self.latitude,
            'longitude': self.longitude,
            "date_created": self.date_created,
            "date_updated": self.date_updated,
            'created_by': self.created_by,
            'updated_by': self.updated_by,
            "archived": self.archived
        }

    def _init_db_record(self) -> None:
        EntityBase._init_db_record(self)
        # optional numbers are absent until geocoded / reviewed
        for field in ('rating', 'latitude', 'longitude', 'description', 'postal_code'):
            if self.db_record.get(field) is None:
                self.db_record.pop(field, None)

    def _validate_mandatory_fields(self):
        try:
            parse_courier_type(self.courier_type)
        except exceptions.CourierConfigurationError:
            self.raise_validation_error('courier_type')
        EntityBase._validate_mandatory_fields(self)

    def get_address(self) -> Optional[Address]:
        return Address.from_record(self._to_dict())

    def get_stored_coordinates(self) -> Optional[Coordinates]:
        return Coordinates.from_record(self._to_dict())

    def store_coordinates(self, coordinates: Coordinates) -> Coordinates:
        """
        Write-through promotion of resolved coordinates.
        A coordinate stored meanwhile by another request wins and is returned
        """
        try:
            utils_db.update_db_item(
                key=self._get_key(),
                update_expression='SET latitude = :latitude, longitude = :longitude',
                expr_attr_values={
                    ':latitude': to_db_number(coordinates.latitude),
                    ':longitude': to_db_number(coordinates.longitude)
                },
                condition_expression='attribute_exists(partkey) AND attribute_not_exists(latitude)'
            )
        except ClientError as error:
            if not utils_db.is_conditional_check_failed(error):
                raise
            stored = Restaurant.init_get_by_id(self.company_id, self.id_, consistent_read=True)
            logger.info(f'store_coordinates ::: restaurant {self.id_} already has coordinates, keeping them')
            if stored.get_stored_coordinates() is not None:
                self.latitude, self.longitude = stored.latitude, stored.longitude
                return stored.get_stored_coordinates()
            return coordinates
        self.latitude, self.longitude = to_db_number(coordinates.latitude), to_db_number(coordinates.longitude)
        logger.info(f'store_coordinates ::: restaurant {self.id_} coordinates stored {coordinates}')
        return coordinates

    def _to_ui(self):
        item = EntityBase._to_ui(self)
        item.pop('owner_id', None)
        return item


@utils_app.log_start_finish
@utils_app.request_exception_handler
def endpoint_get_all(request) -> Response:
    company_id = utils_auth.get_company_id_by_request(request)
    restaurants: List[Dict] = [restaurant.to_ui() for restaurant in Restaurant.get_all(company_id)]
    logger.info(f"endpoint_get_all ::: returning restaurants={[rest['id'] for rest in restaurants]}")
    return Response(status_code=http200, body=restaurants)


@utils_app.log_start_finish
@utils_app.request_exception_handler
def endpoint_get_by_id(request, restaurant_id) -> Response:
    company_id = utils_auth.get_company_id_by_request(request)
    restaurant = Restaurant.init_get_by_id(company_id, restaurant_id).to_ui()
    logger.info(f"endpoint_get_by_id ::: returning restaurant={restaurant}")
    return Response(status_code=http200, body=restaurant)


@utils_app.log_start_finish
@utils_auth.authenticate
@utils_app.request_exception_handler
def endpoint_create(request) -> Response:
    """
    admin operation
    """
    utils_auth.ensure_role(request, 'company_admin')
    request_body = utils_data.parse_raw_body(request)
    for field in ('rating', 'rating_count', 'latitude', 'longitude', 'id', 'id_'):
        request_body.pop(field, None)
    restaurant = Restaurant(
        company_id=request.auth_result['company_id'],
        id_=str(uuid4()),
        request_data={'auth_result': request.auth_result},
        **request_body
    )
    restaurant._create_db_record()
    return Response(status_code=http200, body={'message': 'Restaurant successfully created', 'id': restaurant.id_})
