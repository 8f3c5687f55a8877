from enum import Enum

from chalicelib.utils.exceptions import CourierConfigurationError


class CourierType(str, Enum):
    WALKING = 'WALKING'
    CYCLE = 'CYCLE'
    BICYCLE = 'BICYCLE'
    MOTORCYCLE = 'MOTORCYCLE'
    CAR = 'CAR'


# km/h
COURIER_SPEEDS = {
    CourierType.WALKING: 5,
    CourierType.CYCLE: 15,
    CourierType.BICYCLE: 15,
    CourierType.MOTORCYCLE: 30,
    CourierType.CAR: 25
}

DEFAULT_COURIER_TYPE = CourierType.CYCLE


def parse_courier_type(value) -> CourierType:
    if value is None:
        return DEFAULT_COURIER_TYPE
    if isinstance(value, CourierType):
        return value
    try:
        return CourierType(str(value).upper())
    except ValueError:
        raise CourierConfigurationError(f'Unknown courier type {value!r}, '
                                        f'expected one of {[courier.value for courier in CourierType]}')


def get_courier_speed(value) -> int:
    return COURIER_SPEEDS[parse_courier_type(value)]
