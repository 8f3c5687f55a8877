import os

import boto3
from botocore.config import Config

main_boto_region = os.environ.get('MAIN_BOTO_REGION', 'eu-central-1')
aws_config = Config(retries={'max_attempts': 30}, region_name=main_boto_region)
aws_config_ddb = Config(retries={'max_attempts': 30}, region_name=os.environ.get('AWS_REGION', 'eu-central-1'))

_CLIENTS = {}


def get_sns_client():
    # Simple Notification Service Client.
    if 'sns' not in _CLIENTS:
        _CLIENTS['sns'] = boto3.client('sns', config=aws_config)
    return _CLIENTS['sns']


def reset_clients():
    _CLIENTS.clear()
