from unittest import mock

import pytest
import requests

from chalicelib.geocoding import Address, AddressResolver, Candidate, CoordinateCache, ExplicitAddressStrategy, \
    FallbackLocationChain, FixedLocationStrategy, NominatimProvider, NullCoordinateCache, PopularLocationStrategy, \
    RESOLUTION_FAILED
from chalicelib.utils.distance import Coordinates
from chalicelib.utils.exceptions import GeocodingError

from test.utils.fixtures import FakeGeocodingProvider

address = Address('Duisburg', 'Königstraße', '10', '47051')
full_query = '10 Königstraße, Duisburg, 47051, Germany'
loose_query = 'Königstraße 10, Duisburg, Germany'


def make_resolver(provider, cache=None):
    return AddressResolver(provider=provider, cache=cache if cache is not None else CoordinateCache(),
                           country='Germany')


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_address_queries():
    assert address.full_query('Germany') == full_query
    assert address.loose_query('Germany') == loose_query
    assert Address('Duisburg', 'Königstraße', '10').full_query('Germany') == '10 Königstraße, Duisburg, Germany'


def test_address_cache_key_is_normalized():
    assert address.cache_key() == 'duisburg|königstraße|10|47051'
    assert Address(' DUISBURG', 'Königstraße  ', '10', '47051').cache_key() == address.cache_key()
    assert Address('Duisburg', 'Königstraße', '10').cache_key() == 'duisburg|königstraße|10|'


def test_address_from_record():
    assert Address.from_record({'city': 'Duisburg', 'street_name': 'Königstraße', 'block_number': 10,
                                'postal_code': 47051}) == address
    assert Address.from_record({'city': 'Duisburg', 'street_name': 'Königstraße'}) is None
    assert Address.from_record({}) is None


def test_resolve_uses_cache():
    provider = FakeGeocodingProvider()
    provider.add(full_query, 51.4344, 6.7623)
    resolver = make_resolver(provider)

    assert resolver.resolve(address) == Coordinates(51.4344, 6.7623)
    assert resolver.resolve(Address('duisburg', 'königstraße', '10', '47051')) == Coordinates(51.4344, 6.7623)
    assert provider.queries == [full_query]


def test_resolve_retries_without_postal_code():
    provider = FakeGeocodingProvider()
    provider.add(loose_query, 51.4344, 6.7623)

    assert make_resolver(provider).resolve(address) == Coordinates(51.4344, 6.7623)
    assert provider.queries == [full_query, loose_query]


def test_resolve_caches_failure():
    provider = FakeGeocodingProvider()
    resolver = make_resolver(provider)

    assert resolver.resolve(address) is RESOLUTION_FAILED
    assert resolver.resolve(address) is RESOLUTION_FAILED
    assert provider.queries == [full_query, loose_query]


def test_resolve_provider_error_is_a_failure():
    provider = FakeGeocodingProvider(failing_queries=[full_query, loose_query])
    resolver = make_resolver(provider)

    assert resolver.resolve(address) is RESOLUTION_FAILED
    assert resolver.cache.get(address.cache_key()) is RESOLUTION_FAILED


def test_resolve_takes_first_candidate():
    provider = FakeGeocodingProvider()
    provider.add(full_query, 51.4344, 6.7623)
    provider.add(full_query, 52.52, 13.405)

    assert make_resolver(provider).resolve(address) == Coordinates(51.4344, 6.7623)


def test_resolve_rejects_invalid_candidate():
    provider = FakeGeocodingProvider({full_query: [Candidate(95.0, 6.7623)], loose_query: [Candidate(51.0, 200.0)]})

    assert make_resolver(provider).resolve(address) is RESOLUTION_FAILED


def test_resolve_without_cache():
    provider = FakeGeocodingProvider()
    provider.add(full_query, 51.4344, 6.7623)
    resolver = make_resolver(provider, cache=NullCoordinateCache())

    resolver.resolve(address)
    resolver.resolve(address)

    assert provider.queries == [full_query, full_query]
    assert len(resolver.cache) == 0


def test_cache_entries_expire():
    clock = FakeClock()
    cache = CoordinateCache(ttl=60, clock=clock)
    cache.set('key', Coordinates(1.0, 2.0))
    cache.set('failed', RESOLUTION_FAILED)

    clock.now += 59
    assert cache.get('key') == Coordinates(1.0, 2.0)
    assert cache.get('failed') is RESOLUTION_FAILED

    clock.now += 1
    assert cache.get('key') is None
    assert cache.get('failed') is None
    assert len(cache) == 0


def test_cache_without_ttl_keeps_entries():
    clock = FakeClock()
    cache = CoordinateCache(clock=clock)
    cache.set('key', Coordinates(1.0, 2.0))

    clock.now += 10 ** 9
    assert cache.get('key') == Coordinates(1.0, 2.0)
    assert cache.get('unknown') is None


def test_cache_evicts_least_recently_used():
    cache = CoordinateCache(max_size=2)
    cache.set('first', Coordinates(1.0, 1.0))
    cache.set('second', RESOLUTION_FAILED)
    assert cache.get('first') == Coordinates(1.0, 1.0)

    cache.set('third', Coordinates(3.0, 3.0))

    assert len(cache) == 2
    assert cache.get('second') is None
    assert cache.get('first') == Coordinates(1.0, 1.0)
    assert cache.get('third') == Coordinates(3.0, 3.0)


def test_cache_size_must_be_positive():
    with pytest.raises(ValueError):
        CoordinateCache(max_size=0)


def test_default_resolver_cache_is_bounded(monkeypatch):
    monkeypatch.setenv('GEOCODING_CACHE_TTL', '3600')
    monkeypatch.setenv('GEOCODING_CACHE_MAX_SIZE', '500')

    resolver = AddressResolver(provider=FakeGeocodingProvider())

    assert resolver.cache.ttl == 3600
    assert resolver.cache.max_size == 500


def make_response(ok=True, status_code=200, reason='OK', payload=None):
    response = mock.Mock(ok=ok, status_code=status_code, reason=reason)
    response.json.return_value = payload if payload is not None else []
    return response


def test_nominatim_search():
    session = mock.Mock()
    session.get.return_value = make_response(payload=[
        {'lat': '51.4344', 'lon': '6.7623', 'display_name': 'Königstraße 10, Duisburg'},
        {'lat': '51.0', 'lon': '6.0'}
    ])
    provider = NominatimProvider(url='https://nominatim.test/search', timeout=3, user_agent='food-marketplace-test',
                                 country_codes='de', session=session)

    candidates = provider.search(full_query)

    assert candidates == [Candidate(51.4344, 6.7623, 'Königstraße 10, Duisburg'), Candidate(51.0, 6.0, '')]
    session.get.assert_called_once_with(
        'https://nominatim.test/search',
        params={'format': 'json', 'q': full_query, 'limit': 1, 'countrycodes': 'de'},
        headers={'User-Agent': 'food-marketplace-test'},
        timeout=3
    )


def test_nominatim_timeout():
    session = mock.Mock()
    session.get.side_effect = requests.Timeout('read timed out')

    with pytest.raises(GeocodingError, match='timed out'):
        NominatimProvider(timeout=3, session=session).search(full_query)


def test_nominatim_connection_error():
    session = mock.Mock()
    session.get.side_effect = requests.ConnectionError('connection refused')

    with pytest.raises(GeocodingError, match='request failed'):
        NominatimProvider(session=session).search(full_query)


def test_nominatim_error_status():
    session = mock.Mock()
    session.get.return_value = make_response(ok=False, status_code=503, reason='Service Unavailable')

    with pytest.raises(GeocodingError, match='503'):
        NominatimProvider(session=session).search(full_query)


@pytest.mark.parametrize('payload', [[{'lat': 'north', 'lon': '6.0'}], [{'display_name': 'no coordinates'}],
                                     {'error': 'Unable to geocode'}])
def test_nominatim_malformed_response(payload):
    session = mock.Mock()
    session.get.return_value = make_response(payload=payload)

    with pytest.raises(GeocodingError, match='Malformed'):
        NominatimProvider(session=session).search(full_query)


def test_nominatim_not_json_response():
    session = mock.Mock()
    response = make_response()
    response.json.side_effect = ValueError('Expecting value')
    session.get.return_value = response

    with pytest.raises(GeocodingError):
        NominatimProvider(session=session).search(full_query)


def test_fallback_chain_prefers_explicit_address():
    provider = FakeGeocodingProvider()
    provider.add(full_query, 51.4344, 6.7623)
    resolver = make_resolver(provider)
    location_source = mock.Mock(return_value=('Berlin', '10115'))
    chain = FallbackLocationChain([ExplicitAddressStrategy(resolver),
                                   PopularLocationStrategy(resolver, location_source),
                                   FixedLocationStrategy()])

    assert chain.resolve(address) == Coordinates(51.4344, 6.7623)
    location_source.assert_not_called()


def test_fallback_chain_uses_popular_location():
    provider = FakeGeocodingProvider()
    provider.add('1 Hauptstraße, Berlin, 10115, Germany', 52.52, 13.405)
    resolver = make_resolver(provider)
    chain = FallbackLocationChain([ExplicitAddressStrategy(resolver),
                                   PopularLocationStrategy(resolver, lambda: ('Berlin', '10115'),
                                                           street_name='Hauptstraße', block_number='1'),
                                   FixedLocationStrategy()])

    # unresolvable explicit address falls through to the next tier
    assert chain.resolve(address) == Coordinates(52.52, 13.405)
    assert chain.resolve(None) == Coordinates(52.52, 13.405)


def test_fallback_chain_ends_with_fixed_location():
    resolver = make_resolver(FakeGeocodingProvider())
    chain = FallbackLocationChain([ExplicitAddressStrategy(resolver),
                                   PopularLocationStrategy(resolver, lambda: None),
                                   FixedLocationStrategy()])

    assert chain.resolve(address) == Coordinates(51.4318054, 6.7602219)


def test_fallback_chain_without_result():
    resolver = make_resolver(FakeGeocodingProvider())
    assert FallbackLocationChain([ExplicitAddressStrategy(resolver)]).resolve(address) is None
