from collections import Counter
from datetime import datetime
from typing import Tuple, List, Dict, Optional

from boto3.dynamodb.conditions import Key
from chalice import Response

from chalicelib.base_class_entity import EntityBase
from chalicelib.constants import keys_structure
from chalicelib.constants.status_codes import http200
from chalicelib.geocoding import Address
from chalicelib.utils import auth as utils_auth, app as utils_app, data as utils_data, db as utils_db
from chalicelib.utils.logger import logger


class User(EntityBase):
    pk = keys_structure.users_pk
    sk = keys_structure.users_sk

    required_immutable_fields_validation = {
        'id_': lambda x: isinstance(x, str),
        'role': lambda x: x in ('user', 'restaurant_manager', 'company_admin'),
        'date_created': lambda x: isinstance(x, str)
    }

    required_mutable_fields_validation = {
        'date_updated': lambda x: isinstance(x, str)
    }

    optional_fields_validation = {
        'first_name': lambda x: isinstance(x, str),
        'last_name': lambda x: isinstance(x, str),
        'email': lambda x: isinstance(x, str),
        'city': lambda x: isinstance(x, str) and len(x) > 0,
        'street_name': lambda x: isinstance(x, str) and len(x) > 0,
        'block_number': lambda x: isinstance(x, str) and len(x) > 0,
        'postal_code': lambda x: isinstance(x, str),
        'permissions_': lambda x: isinstance(x, dict)
    }

    def __init__(self, company_id, id_, **kwargs):
        EntityBase.__init__(self, company_id, id_)

        self.request_data = kwargs.get('request_data', {})
        self.role = kwargs.get('role', 'user')
        self.first_name = kwargs.get('first_name')
        self.last_name = kwargs.get('last_name')
        self.email = kwargs.get('email')
        self.city = kwargs.get('city')
        self.street_name = kwargs.get('street_name')
        self.block_number = str(kwargs['block_number']) if kwargs.get('block_number') is not None else None
        self.postal_code = str(kwargs['postal_code']) if kwargs.get('postal_code') is not None else None
        self.permissions_ = kwargs.get('permissions_') or kwargs.get('permissions') or {}
        self.date_created = kwargs.get('date_created') or datetime.now().isoformat(timespec='seconds')
        self.date_updated = kwargs.get('date_updated') or datetime.now().isoformat(timespec='seconds')
        self.record_type = 'user'

    @classmethod
    def init_by_id(cls, company_id, id_):
        logger.info("init_by_id ::: started")
        c = cls(company_id, id_)
        c.__init__(**c._get_db_item())
        return c

    @classmethod
    def find_by_id(cls, company_id, id_) -> Optional['User']:
        record = utils_db.find_db_item(keys_structure.users_pk.format(company_id=company_id),
                                       keys_structure.users_sk.format(user_id=id_))
        return cls(**record) if record else None

    def get_address(self) -> Optional[Address]:
        return Address.from_record(self._to_dict())

    def address_to_ui(self) -> Dict:
        return {'city': self.city, 'street_name': self.street_name, 'block_number': self.block_number,
                'postal_code': self.postal_code}

    def _get_pk_sk(self) -> Tuple[str, str]:
        return self.pk.format(company_id=self.company_id), self.sk.format(user_id=self.id_)

    def _to_dict(self):
        return {
            'id_': self.id_,
            'role': self.role,
            'date_created': self.date_created,
            'date_updated': self.date_updated,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'email': self.email,
            'city': self.city,
            'street_name': self.street_name,
            'block_number': self.block_number,
            'postal_code': self.postal_code,
            'permissions_': self.permissions_
        }


def get_most_common_location(company_id) -> Optional[Tuple[str, str]]:
    """
    (city, postal code) pair shared by the most users,
    on a tie the pair met first in the users partition wins
    """
    user_records: List[Dict] = utils_db.query_items_paged(
        Key('partkey').eq(keys_structure.users_pk.format(company_id=company_id))
    )
    locations = Counter(
        (str(record['city']).strip(), str(record['postal_code']).strip())
        for record in user_records if record.get('city') and record.get('postal_code')
    )
    if not locations:
        return None
    location, users_count = locations.most_common(1)[0]
    logger.info(f'get_most_common_location ::: {location=} shared by {users_count} users')
    return location


@utils_app.log_start_finish
@utils_auth.authenticate
@utils_app.request_exception_handler
def endpoint_get_user(request) -> Response:
    auth_result = request.auth_result
    user = User.init_by_id(auth_result['company_id'], auth_result['user_id'])
    return Response(status_code=http200, body=user.to_ui())


@utils_app.log_start_finish
@utils_auth.authenticate
@utils_app.request_exception_handler
def endpoint_update_location(request) -> Response:
    auth_result = request.auth_result
    request_body = utils_data.parse_raw_body(request)
    user = User.init_by_id(auth_result['company_id'], auth_result['user_id'])
    user.request_data = {'auth_result': auth_result}
    for field in ('city', 'street_name', 'block_number', 'postal_code'):
        if field in request_body:
            setattr(user, field, str(request_body[field]))
    user._update_db_record()
    return Response(status_code=http200, body={'message': 'Location updated successfully', 'id': user.id_,
                                               'location': user.address_to_ui()})
