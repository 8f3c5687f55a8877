"""
Restaurant discovery ordered by the distance from the customer.

The customer location is resolved once per call through the fallback ladder,
restaurants use their stored coordinates and are geocoded otherwise, the
resolved coordinates are persisted back onto the restaurant.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from botocore.exceptions import ClientError
from chalice import Response

from chalicelib.constants.status_codes import http200
from chalicelib.geocoding import Address, AddressResolver, ExplicitAddressStrategy, FallbackLocationChain, \
    FixedLocationStrategy, PopularLocationStrategy, get_address_resolver
from chalicelib.restaurants import Restaurant
from chalicelib.users import User, get_most_common_location
from chalicelib.utils import app as utils_app, auth as utils_auth, data as utils_data, exceptions
from chalicelib.utils.distance import Coordinates, calculate_distance, format_distance
from chalicelib.utils.logger import logger

SORT_FIELDS = ('distance', 'rating')


@dataclass
class RestaurantDistance:
    restaurant: Restaurant
    distance_km: Optional[float] = None

    def to_ui(self) -> Dict:
        item = self.restaurant.to_ui()
        item['distance_km'] = round(self.distance_km, 2) if self.distance_km is not None else None
        item['distance_text'] = format_distance(self.distance_km)
        return item


def build_customer_chain(company_id, resolver: AddressResolver) -> FallbackLocationChain:
    return FallbackLocationChain([
        ExplicitAddressStrategy(resolver),
        PopularLocationStrategy(resolver, lambda: get_most_common_location(company_id)),
        FixedLocationStrategy()
    ])


def _sorted_none_last(entries: List[RestaurantDistance], key, descending: bool) -> List[RestaurantDistance]:
    known = [entry for entry in entries if key(entry) is not None]
    unknown = [entry for entry in entries if key(entry) is None]
    # list.sort keeps the input order of equal keys, reverse=True included
    known.sort(key=key, reverse=descending)
    return known + unknown


class DiscoveryService:
    def __init__(self, company_id, resolver: Optional[AddressResolver] = None,
                 customer_chain: Optional[FallbackLocationChain] = None):
        self.company_id = company_id
        self.resolver = resolver or get_address_resolver()
        self.customer_chain = customer_chain or build_customer_chain(company_id, self.resolver)

    def customer_coordinates(self, customer_address: Optional[Address]) -> Optional[Coordinates]:
        return self.customer_chain.resolve(customer_address)

    def restaurant_coordinates(self, restaurant: Restaurant) -> Optional[Coordinates]:
        try:
            stored = restaurant.get_stored_coordinates()
        except exceptions.InvalidCoordinateError as error:
            logger.warning(f'restaurant_coordinates ::: restaurant {restaurant.id_} stored coordinates {error}')
            return None
        if stored is not None:
            return stored

        address = restaurant.get_address()
        if address is None:
            logger.info(f'restaurant_coordinates ::: restaurant {restaurant.id_} has no complete address')
            return None
        resolved = self.resolver.resolve(address)
        if not resolved:
            return None
        try:
            return restaurant.store_coordinates(resolved)
        except ClientError as error:
            logger.warning(f'restaurant_coordinates ::: could not persist coordinates of restaurant '
                           f'{restaurant.id_}: {error}')
            return resolved

    def list_with_distance(self, customer_address: Optional[Address], restaurants: Sequence[Restaurant],
                           descending: bool = False, sort_by: str = 'distance') -> List[RestaurantDistance]:
        if sort_by not in SORT_FIELDS:
            raise exceptions.ValidationException(f'Cannot sort restaurants by {sort_by}, use one of {SORT_FIELDS}')
        if not isinstance(descending, bool):
            raise exceptions.ValidationException(f'descending must be true or false, got {descending!r}')

        customer = self.customer_coordinates(customer_address)
        logger.info(f'list_with_distance ::: customer location {customer}, {len(restaurants)} restaurants')
        entries = []
        for restaurant in restaurants:
            coordinates = self.restaurant_coordinates(restaurant) if customer is not None else None
            distance = calculate_distance(customer, coordinates) if coordinates is not None else None
            entries.append(RestaurantDistance(restaurant, distance))

        if sort_by == 'rating':
            return _sorted_none_last(entries, lambda entry: entry.restaurant.rating, descending)
        return _sorted_none_last(entries, lambda entry: entry.distance_km, descending)

    def distance_between(self, restaurant: Restaurant, customer_address: Optional[Address]) -> Optional[float]:
        """
        Kilometers from the restaurant to the customer,
        None when the restaurant location is unknown
        """
        restaurant_location = self.restaurant_coordinates(restaurant)
        if restaurant_location is None:
            return None
        customer = self.customer_coordinates(customer_address)
        if customer is None:
            return None
        return calculate_distance(restaurant_location, customer)


@utils_app.log_start_finish
@utils_app.request_exception_handler
def endpoint_get_with_distance(request) -> Response:
    """
    Body: optional address fields (city, street_name, block_number, postal_code),
    sort_by (distance | rating), descending.
    Without an address the profile address of the calling user is used, if any
    """
    company_id = utils_auth.get_company_id_by_request(request)
    request_body = utils_data.parse_raw_body(request)
    customer_address = Address.from_record(request_body)
    user_id = (request.headers or {}).get('authorization')
    if customer_address is None and user_id:
        user = User.find_by_id(company_id, user_id)
        customer_address = user.get_address() if user else None

    restaurants = DiscoveryService(company_id).list_with_distance(
        customer_address,
        Restaurant.get_all(company_id),
        descending=request_body.get('descending', False),
        sort_by=request_body.get('sort_by', 'distance')
    )
    return Response(status_code=http200, body=[entry.to_ui() for entry in restaurants])
