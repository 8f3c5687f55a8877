"""
Address -> coordinates resolution backed by OpenStreetMap Nominatim.

AddressResolver looks the normalized address up in an injected cache, asks the
geocoding provider on a miss (full query first, then a looser query without
the postal code) and caches the outcome, failures included.
The customer location is resolved through FallbackLocationChain, an ordered
list of LocationStrategy tiers tried until one returns coordinates.
"""
import os
import re
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import requests

from chalicelib.constants.constants import GEOCODING_COUNTRY, GEOCODING_COUNTRY_CODES, GEOCODING_URL, \
    GEOCODING_USER_AGENT, PLACEHOLDER_BLOCK_NUMBER, PLACEHOLDER_STREET, get_fallback_coordinates, \
    get_geocoding_cache_max_size, get_geocoding_cache_ttl, get_geocoding_timeout
from chalicelib.utils.distance import Coordinates
from chalicelib.utils.exceptions import GeocodingError, InvalidCoordinateError
from chalicelib.utils.logger import logger


class ResolutionFailed:
    """ Marker of an address the geocoder could not resolve """
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return 'RESOLUTION_FAILED'


RESOLUTION_FAILED = ResolutionFailed()

Resolution = Union[Coordinates, ResolutionFailed]


def _normalize(value) -> str:
    return re.sub(r'\s+', ' ', str(value or '')).strip().lower()


@dataclass(frozen=True)
class Address:
    city: str
    street_name: str
    block_number: str
    postal_code: Optional[str] = None

    @classmethod
    def from_record(cls, record: Dict) -> Optional['Address']:
        """ Address fields of a user or restaurant record, None when incomplete """
        city, street_name, block_number = record.get('city'), record.get('street_name'), record.get('block_number')
        if not (city and street_name and block_number):
            return None
        postal_code = record.get('postal_code')
        return cls(str(city), str(street_name), str(block_number), str(postal_code) if postal_code else None)

    def cache_key(self) -> str:
        return '|'.join(_normalize(part) for part in (self.city, self.street_name, self.block_number,
                                                      self.postal_code))

    def full_query(self, country: str) -> str:
        postal_code = f', {self.postal_code}' if self.postal_code else ''
        return f'{self.block_number} {self.street_name}, {self.city}{postal_code}, {country}'

    def loose_query(self, country: str) -> str:
        return f'{self.street_name} {self.block_number}, {self.city}, {country}'


@dataclass(frozen=True)
class Candidate:
    latitude: float
    longitude: float
    display_name: str = ''


class GeocodingProvider(ABC):
    @abstractmethod
    def search(self, query: str) -> List[Candidate]:
        """
        Free text search, candidates ordered by confidence
        Raise GeocodingError when the provider is not reachable or answers with an error
        """


class NominatimProvider(GeocodingProvider):
    def __init__(self, url: Optional[str] = None, timeout: Optional[float] = None, user_agent: Optional[str] = None,
                 country_codes: Optional[str] = None, limit: int = 1, session: Optional[requests.Session] = None):
        self.url = url or os.environ.get('GEOCODING_URL', GEOCODING_URL)
        self.timeout = timeout or get_geocoding_timeout()
        self.user_agent = user_agent or os.environ.get('GEOCODING_USER_AGENT', GEOCODING_USER_AGENT)
        self.country_codes = country_codes or os.environ.get('GEOCODING_COUNTRY_CODES', GEOCODING_COUNTRY_CODES)
        self.limit = limit
        self.session = session or requests.Session()

    def search(self, query: str) -> List[Candidate]:
        logger.info(f'search ::: geocoding {query=}')
        try:
            response = self.session.get(
                self.url,
                params={'format': 'json', 'q': query, 'limit': self.limit, 'countrycodes': self.country_codes},
                headers={'User-Agent': self.user_agent},
                timeout=self.timeout
            )
        except requests.Timeout as error:
            raise GeocodingError(f'Geocoding timed out after {self.timeout}s for {query=}') from error
        except requests.RequestException as error:
            raise GeocodingError(f'Geocoding request failed for {query=}: {error}') from error

        if not response.ok:
            raise GeocodingError(f'Geocoding API error {response.status_code} {response.reason} for {query=}')

        try:
            return [
                Candidate(float(result['lat']), float(result['lon']), result.get('display_name', ''))
                for result in response.json()
            ]
        except (ValueError, KeyError, TypeError) as error:
            raise GeocodingError(f'Malformed geocoding response for {query=}: {error}') from error


class CoordinateCache:
    """
    Positive and negative lookup table of resolved addresses.
    ttl=None keeps entries until they are evicted, max_size=None never evicts.
    When full, the least recently used entry is dropped
    """
    _MISS = object()

    def __init__(self, ttl: Optional[float] = None, clock: Callable[[], float] = time.monotonic,
                 max_size: Optional[int] = None):
        if max_size is not None and max_size < 1:
            raise ValueError(f'max_size must be positive, got {max_size}')
        self.ttl = ttl
        self.max_size = max_size
        self._clock = clock
        self._entries: 'OrderedDict[str, Tuple[Resolution, Optional[float]]]' = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Resolution]:
        """ None on a miss, coordinates or RESOLUTION_FAILED on a hit """
        with self._lock:
            value, expires_at = self._entries.get(key, (self._MISS, None))
            if value is self._MISS:
                return None
            if expires_at is not None and expires_at <= self._clock():
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return value

    def set(self, key: str, value: Resolution) -> None:
        expires_at = self._clock() + self.ttl if self.ttl else None
        with self._lock:
            self._entries[key] = (value, expires_at)
            self._entries.move_to_end(key)
            while self.max_size is not None and len(self._entries) > self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f'CoordinateCache ::: evicted {evicted}')

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self):
        with self._lock:
            return len(self._entries)


class NullCoordinateCache(CoordinateCache):
    def get(self, key: str) -> Optional[Resolution]:
        return None

    def set(self, key: str, value: Resolution) -> None:
        pass


class AddressResolver:
    def __init__(self, provider: Optional[GeocodingProvider] = None, cache: Optional[CoordinateCache] = None,
                 country: Optional[str] = None):
        self.provider = provider or NominatimProvider()
        if cache is None:
            cache = CoordinateCache(ttl=get_geocoding_cache_ttl(), max_size=get_geocoding_cache_max_size())
        self.cache = cache
        self.country = country or os.environ.get('GEOCODING_COUNTRY', GEOCODING_COUNTRY)

    def resolve(self, address: Address) -> Resolution:
        key = address.cache_key()
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f'resolve ::: cache hit {key=} {cached=}')
            return cached

        result = self._search_first(address.full_query(self.country))
        if result is RESOLUTION_FAILED:
            logger.info(f'resolve ::: retrying {key=} without postal code')
            result = self._search_first(address.loose_query(self.country))

        self.cache.set(key, result)
        logger.info(f'resolve ::: {key=} resolved to {result}')
        return result

    def _search_first(self, query: str) -> Resolution:
        try:
            candidates = self.provider.search(query)
        except GeocodingError as error:
            logger.warning(f'_search_first ::: {error}')
            return RESOLUTION_FAILED
        if not candidates:
            logger.info(f'_search_first ::: no results for {query=}')
            return RESOLUTION_FAILED
        first = candidates[0]
        try:
            return Coordinates(first.latitude, first.longitude)
        except InvalidCoordinateError as error:
            logger.warning(f'_search_first ::: provider returned {first} for {query=}: {error}')
            return RESOLUTION_FAILED


class LocationStrategy(ABC):
    name = ''

    @abstractmethod
    def resolve(self, hint: Optional[Address]) -> Optional[Coordinates]:
        pass


class ExplicitAddressStrategy(LocationStrategy):
    name = 'explicit_address'

    def __init__(self, resolver: AddressResolver):
        self.resolver = resolver

    def resolve(self, hint: Optional[Address]) -> Optional[Coordinates]:
        if hint is None:
            return None
        return self.resolver.resolve(hint) or None


class PopularLocationStrategy(LocationStrategy):
    """
    The most frequent (city, postal code) of registered users,
    resolved with a placeholder street
    """
    name = 'popular_location'

    def __init__(self, resolver: AddressResolver, location_source: Callable[[], Optional[Tuple[str, str]]],
                 street_name: Optional[str] = None, block_number: Optional[str] = None):
        self.resolver = resolver
        self.location_source = location_source
        self.street_name = street_name or os.environ.get('PLACEHOLDER_STREET', PLACEHOLDER_STREET)
        self.block_number = block_number or os.environ.get('PLACEHOLDER_BLOCK_NUMBER', PLACEHOLDER_BLOCK_NUMBER)

    def resolve(self, hint: Optional[Address]) -> Optional[Coordinates]:
        location = self.location_source()
        if not location:
            return None
        city, postal_code = location
        return self.resolver.resolve(Address(city, self.street_name, self.block_number, postal_code)) or None


class FixedLocationStrategy(LocationStrategy):
    name = 'fallback_city'

    def __init__(self, coordinates: Optional[Coordinates] = None):
        self.coordinates = coordinates or Coordinates(*get_fallback_coordinates())

    def resolve(self, hint: Optional[Address]) -> Optional[Coordinates]:
        return self.coordinates


class FallbackLocationChain:
    def __init__(self, strategies: Sequence[LocationStrategy]):
        self.strategies = list(strategies)

    def resolve(self, hint: Optional[Address]) -> Optional[Coordinates]:
        for strategy in self.strategies:
            coordinates = strategy.resolve(hint)
            if coordinates:
                logger.info(f'resolve ::: location resolved by {strategy.name} to {coordinates}')
                return coordinates
            logger.info(f'resolve ::: {strategy.name} gave no location, trying next tier')
        return None


_default_resolver: Optional[AddressResolver] = None
_default_resolver_lock = threading.Lock()


def get_address_resolver() -> AddressResolver:
    """ Process scoped resolver, its cache lives as long as the lambda container """
    global _default_resolver
    with _default_resolver_lock:
        if _default_resolver is None:
            _default_resolver = AddressResolver()
        return _default_resolver


def set_address_resolver(resolver: Optional[AddressResolver]) -> None:
    global _default_resolver
    with _default_resolver_lock:
        _default_resolver = resolver
