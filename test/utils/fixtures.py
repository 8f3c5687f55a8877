import os
from decimal import Decimal
from typing import Dict, List, Optional

import boto3
import pytest
from chalice.test import Client
from moto import mock_aws

from app import app

from chalicelib import geocoding
from chalicelib.accounts import Ledger
from chalicelib.constants.constants import COMPANY_ID
from chalicelib.geocoding import AddressResolver, Candidate, CoordinateCache, GeocodingProvider
from chalicelib.menu_items import MenuItem
from chalicelib.restaurants import Restaurant
from chalicelib.users import User
from chalicelib.utils import db
from chalicelib.utils.boto_clients import aws_config_ddb, reset_clients
from chalicelib.utils.exceptions import GeocodingError

TEST_TABLE_NAME = 'food-marketplace-test'
TEST_REGION = 'eu-central-1'
PROJECT_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

test_company_id = COMPANY_ID

id_admin = '13303309-d941-486f-b600-3e90929ac50f'
id_restaurant_manager = '8178f948-cdc2-4e8c-b013-07a956e7e72a'
id_user = 'e5b01491-e538-4be3-8d3c-a57db7fc43c1'


@pytest.fixture
def aws_environment(monkeypatch):
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', TEST_REGION)
    monkeypatch.setenv('GEN_TABLE_NAME', TEST_TABLE_NAME)
    monkeypatch.setenv('COMPANY_ID', test_company_id)
    monkeypatch.delenv('ENDPOINT_URL', raising=False)
    monkeypatch.delenv('NOTIFICATIONS_TOPIC_ARN', raising=False)


@pytest.fixture
def gen_table(aws_environment):
    with mock_aws():
        db.reset_tables()
        reset_clients()
        table = boto3.resource('dynamodb', config=aws_config_ddb).create_table(
            TableName=TEST_TABLE_NAME,
            KeySchema=[
                {'AttributeName': 'partkey', 'KeyType': 'HASH'},
                {'AttributeName': 'sortkey', 'KeyType': 'RANGE'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'partkey', 'AttributeType': 'S'},
                {'AttributeName': 'sortkey', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )
        yield table
        db.reset_tables()
        reset_clients()


class FakeGeocodingProvider(GeocodingProvider):
    """ Answers from a query -> candidates dict and records every query """

    def __init__(self, results: Optional[Dict[str, List[Candidate]]] = None, failing_queries=()):
        self.results = results or {}
        self.failing_queries = set(failing_queries)
        self.queries: List[str] = []

    def add(self, query: str, latitude: float, longitude: float):
        self.results.setdefault(query, []).append(Candidate(latitude, longitude, query))

    def search(self, query: str) -> List[Candidate]:
        self.queries.append(query)
        if query in self.failing_queries:
            raise GeocodingError(f'Geocoding timed out for {query=}')
        return list(self.results.get(query, []))


@pytest.fixture
def geocoder():
    provider = FakeGeocodingProvider()
    geocoding.set_address_resolver(AddressResolver(provider=provider, cache=CoordinateCache(), country='Germany'))
    yield provider
    geocoding.set_address_resolver(None)


@pytest.fixture
def client(gen_table, geocoder):
    with Client(app, stage_name='test', project_dir=PROJECT_DIR) as test_client:
        yield test_client


def create_test_user(user_id=id_user, role='user', permissions=None, **address) -> User:
    user = User(
        company_id=test_company_id,
        id_=user_id,
        role=role,
        email=f'{role}@test.de',
        first_name='test',
        last_name=role,
        permissions_=permissions or {},
        **address
    )
    user._create_db_record()
    return user


def create_test_restaurant(restaurant_id='restaurant-1', owner_id=id_restaurant_manager, **kwargs) -> Restaurant:
    fields = {
        'title': 'Schawarma House',
        'description': 'Test restaurant',
        'city': 'Duisburg',
        'street_name': 'Königstraße',
        'block_number': '10',
        'postal_code': '47051',
        'courier_type': 'CYCLE',
        **kwargs
    }
    restaurant = Restaurant(
        company_id=test_company_id,
        id_=restaurant_id,
        owner_id=owner_id,
        request_data={'auth_result': {'user_id': id_admin}},
        **fields
    )
    restaurant._create_db_record()
    return restaurant


def create_test_menu_item(restaurant_id, menu_item_id, price, title=None, **kwargs) -> MenuItem:
    menu_item = MenuItem(
        company_id=test_company_id,
        id_=menu_item_id,
        restaurant_id=restaurant_id,
        title=title or menu_item_id,
        category='main',
        price=Decimal(price),
        request_data={'auth_result': {'user_id': id_restaurant_manager}},
        **kwargs
    )
    menu_item._create_db_record()
    return menu_item


def fund_account(account_id, amount) -> Decimal:
    return Ledger(test_company_id).deposit(account_id, Decimal(amount)).balances[account_id]
