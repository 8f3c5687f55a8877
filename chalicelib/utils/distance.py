import math
from dataclasses import dataclass
from decimal import Decimal
from numbers import Real
from typing import Optional

from chalicelib.constants.constants import EARTH_RADIUS_KM
from chalicelib.utils.exceptions import InvalidCoordinateError


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float

    def __post_init__(self):
        validate_coordinates(self.latitude, self.longitude)

    @classmethod
    def from_record(cls, record: dict) -> Optional['Coordinates']:
        """ Coordinates stored on a db record, None when not populated yet """
        latitude, longitude = record.get('latitude'), record.get('longitude')
        if latitude is None or longitude is None:
            return None
        return cls(float(latitude), float(longitude))


def validate_coordinates(latitude, longitude) -> None:
    for name, value, limit in (('latitude', latitude, 90), ('longitude', longitude, 180)):
        if isinstance(value, bool) or not isinstance(value, (Real, Decimal)):
            raise InvalidCoordinateError(f'{name}={value!r} is not a number')
        if math.isnan(value) or not -limit <= value <= limit:
            raise InvalidCoordinateError(f'{name}={value} is outside [-{limit}, {limit}]')


def calculate_distance(coords1: Coordinates, coords2: Coordinates) -> float:
    """
    Great-circle distance between two points using the Haversine formula
    :return:
    distance in kilometers, not rounded
    """
    for coords in (coords1, coords2):
        validate_coordinates(coords.latitude, coords.longitude)

    lat1_rad = math.radians(coords1.latitude)
    lat2_rad = math.radians(coords2.latitude)
    delta_lat = math.radians(coords2.latitude - coords1.latitude)
    delta_lon = math.radians(coords2.longitude - coords1.longitude)

    a = (math.sin(delta_lat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) *
         math.sin(delta_lon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def format_distance(distance_km: Optional[float]) -> str:
    if distance_km is None:
        return 'Distance unavailable'
    return f'{distance_km:.1f} km'
