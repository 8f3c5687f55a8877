import json
import os
from typing import Dict

from chalicelib.utils.boto_clients import get_sns_client
from chalicelib.utils.logger import logger, CustomJSONEncoder


def publish_event(event_type: str, payload: Dict):
    """
    Publishes a domain event to the notifications topic,
    without NOTIFICATIONS_TOPIC_ARN the event is only logged
    """
    message = json.dumps({'event_type': event_type, **payload}, cls=CustomJSONEncoder)
    topic_arn = os.environ.get('NOTIFICATIONS_TOPIC_ARN')
    if not topic_arn:
        logger.info(f'publish_event ::: no topic configured, {event_type=} {message=}')
        return None
    logger.info(f'Publishing event {event_type=} to {topic_arn=}')
    response = get_sns_client().publish(
        TopicArn=topic_arn,
        Message=message,
        MessageAttributes={'event_type': {'DataType': 'String', 'StringValue': event_type}}
    )
    logger.info(f'Event has been published, message_id={response.get("MessageId")}')
    return response.get('MessageId')
