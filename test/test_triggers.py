import json
from decimal import Decimal
from unittest import mock

import pytest
from boto3.dynamodb.types import TypeSerializer
from chalice.app import DynamoDBEvent

from chalicelib import triggers
from chalicelib.utils import notifications
from chalicelib.utils.boto_clients import get_sns_client

from test.utils.fixtures import aws_environment, gen_table, test_company_id, id_user

serializer = TypeSerializer()


def order_image(status):
    return {
        'record_type': 'order',
        'company_id': test_company_id,
        'id_': 'order-1',
        'user_id': id_user,
        'restaurant_id': 'restaurant-1',
        'amount': Decimal('21.28'),
        'status_': status,
        'estimated_delivery': '2024-05-01T12:30:00'
    }


def stream_record(event_name, new_image=None, old_image=None, event_id='event-1'):
    dynamodb = {
        'ApproximateCreationDateTime': 1714564800,
        'Keys': {'partkey': {'S': f'orders_{test_company_id}'}, 'sortkey': {'S': 'order-1'}},
        'SequenceNumber': '100000000000000000001',
        'SizeBytes': 256,
        'StreamViewType': 'NEW_AND_OLD_IMAGES'
    }
    if new_image is not None:
        dynamodb['NewImage'] = {key: serializer.serialize(value) for key, value in new_image.items()}
    if old_image is not None:
        dynamodb['OldImage'] = {key: serializer.serialize(value) for key, value in old_image.items()}
    return {
        'awsRegion': 'eu-central-1',
        'eventID': event_id,
        'eventName': event_name,
        'eventSource': 'aws:dynamodb',
        'eventSourceARN': 'arn:aws:dynamodb:eu-central-1:123456789012:table/food-marketplace-test/stream/2024',
        'eventVersion': '1.1',
        'dynamodb': dynamodb
    }


def make_event(*records):
    return DynamoDBEvent({'Records': list(records)}, None)


@pytest.fixture
def topic_arn(gen_table, monkeypatch):
    arn = get_sns_client().create_topic(Name='food-marketplace-events')['TopicArn']
    monkeypatch.setenv('NOTIFICATIONS_TOPIC_ARN', arn)
    return arn


def test_deserialize_ddb_record():
    image = {key: serializer.serialize(value) for key, value in order_image('PENDING').items()}
    assert triggers.deserialize_ddb_rec(image) == order_image('PENDING')
    assert triggers.deserialize_ddb_rec(None) == {}


def test_publish_event_to_topic(topic_arn):
    message_id = notifications.publish_event('order_status_changed', {'order_id': 'order-1',
                                                                      'amount': Decimal('21.28')})
    assert message_id


def test_publish_event_without_topic(aws_environment):
    with mock.patch('chalicelib.utils.notifications.get_sns_client') as get_client:
        assert notifications.publish_event('order_status_changed', {'order_id': 'order-1'}) is None
    get_client.assert_not_called()


def test_status_change_is_published(topic_arn):
    event = make_event(stream_record('MODIFY', new_image=order_image('CONFIRMED'),
                                     old_image=order_image('PENDING')))

    with mock.patch('chalicelib.utils.notifications.get_sns_client') as get_client:
        get_client.return_value.publish.return_value = {'MessageId': 'message-1'}
        triggers.db_gen_table_stream_trigger(event)

    publish_kwargs = get_client.return_value.publish.call_args.kwargs
    assert publish_kwargs['TopicArn'] == topic_arn
    assert publish_kwargs['MessageAttributes'] == {
        'event_type': {'DataType': 'String', 'StringValue': 'order_status_changed'}}
    assert json.loads(publish_kwargs['Message']) == {
        'event_type': 'order_status_changed',
        'company_id': test_company_id,
        'order_id': 'order-1',
        'user_id': id_user,
        'restaurant_id': 'restaurant-1',
        'previous_status': 'PENDING',
        'status': 'CONFIRMED',
        'estimated_delivery': '2024-05-01T12:30:00'
    }


@pytest.mark.parametrize('record', [
    stream_record('INSERT', new_image=order_image('PENDING')),
    stream_record('MODIFY', new_image=order_image('PENDING'), old_image=order_image('PENDING')),
    stream_record('REMOVE', old_image=order_image('PENDING')),
    stream_record('INSERT', new_image={'record_type': 'account', 'id_': id_user, 'balance': Decimal('10.00')}),
])
def test_other_changes_are_not_published(topic_arn, record):
    with mock.patch('chalicelib.utils.notifications.get_sns_client') as get_client:
        triggers.db_gen_table_stream_trigger(make_event(record))
    get_client.return_value.publish.assert_not_called()


def test_new_review_is_published(topic_arn):
    review = {'record_type': 'review', 'company_id': test_company_id, 'id_': 'order-1', 'order_id': 'order-1',
              'restaurant_id': 'restaurant-1', 'user_id': id_user, 'rating': 4}

    with mock.patch('chalicelib.utils.notifications.get_sns_client') as get_client:
        triggers.db_gen_table_stream_trigger(make_event(stream_record('INSERT', new_image=review)))

    message = json.loads(get_client.return_value.publish.call_args.kwargs['Message'])
    assert message['event_type'] == 'review_recorded'
    assert message['rating'] == 4


def test_failing_record_does_not_stop_the_batch(topic_arn):
    event = make_event(
        stream_record('MODIFY', new_image=order_image('CONFIRMED'), old_image=order_image('PENDING'),
                      event_id='event-1'),
        stream_record('MODIFY', new_image=order_image('PREPARING'), old_image=order_image('CONFIRMED'),
                      event_id='event-2'),
    )

    with mock.patch('chalicelib.utils.notifications.get_sns_client') as get_client:
        get_client.return_value.publish.side_effect = [Exception('SNS is down'), {'MessageId': 'message-2'}]
        triggers.db_gen_table_stream_trigger(event)

    assert get_client.return_value.publish.call_count == 2
