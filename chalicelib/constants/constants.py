import os
from decimal import Decimal

COMPANY_ID = 'f770d5f7-6dd2-4cdf-842b-5fd0dd84a52a'

PLATFORM_ACCOUNT_ID = 'platform'

SERVICE_FEE_RATE = Decimal('0.15')
CENTS = Decimal('0.01')

PREPARATION_MINUTES = 20
PLACEHOLDER_DISTANCE_KM = 2.5

LEDGER_MAX_RETRIES = 5

GEOCODING_URL = 'https://nominatim.openstreetmap.org/search'
GEOCODING_TIMEOUT = 10
GEOCODING_USER_AGENT = 'Lieferspatz-Food-Delivery-App/1.0'
GEOCODING_COUNTRY = 'Germany'
GEOCODING_COUNTRY_CODES = 'de'
GEOCODING_CACHE_MAX_SIZE = 10000

# Duisburg city centre
FALLBACK_LATITUDE = 51.4318054
FALLBACK_LONGITUDE = 6.7602219

PLACEHOLDER_STREET = 'Hauptstraße'
PLACEHOLDER_BLOCK_NUMBER = '1'

EARTH_RADIUS_KM = 6371


def get_company_id() -> str:
    return os.environ.get('COMPANY_ID', COMPANY_ID)


def get_platform_account_id() -> str:
    return os.environ.get('PLATFORM_ACCOUNT_ID', PLATFORM_ACCOUNT_ID)


def get_service_fee_rate() -> Decimal:
    return Decimal(os.environ.get('SERVICE_FEE_RATE', SERVICE_FEE_RATE))


def get_preparation_minutes() -> int:
    return int(os.environ.get('PREPARATION_MINUTES', PREPARATION_MINUTES))


def get_placeholder_distance_km() -> float:
    return float(os.environ.get('PLACEHOLDER_DISTANCE_KM', PLACEHOLDER_DISTANCE_KM))


def get_ledger_max_retries() -> int:
    return int(os.environ.get('LEDGER_MAX_RETRIES', LEDGER_MAX_RETRIES))


def get_geocoding_timeout() -> float:
    return float(os.environ.get('GEOCODING_TIMEOUT', GEOCODING_TIMEOUT))


def get_geocoding_cache_ttl():
    ttl = os.environ.get('GEOCODING_CACHE_TTL')
    return float(ttl) if ttl else None


def get_geocoding_cache_max_size():
    max_size = os.environ.get('GEOCODING_CACHE_MAX_SIZE', GEOCODING_CACHE_MAX_SIZE)
    return int(max_size) if max_size else None


def get_fallback_coordinates():
    return (float(os.environ.get('FALLBACK_LATITUDE', FALLBACK_LATITUDE)),
            float(os.environ.get('FALLBACK_LONGITUDE', FALLBACK_LONGITUDE)))
