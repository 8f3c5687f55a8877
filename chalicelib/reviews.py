from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Tuple, List, Dict, Optional

from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError
from chalice import Response

from chalicelib.base_class_entity import EntityBase
from chalicelib.constants import keys_structure
from chalicelib.constants.status_codes import http200
from chalicelib.order_status import OrderStatus
from chalicelib.orders import Order
from chalicelib.utils import auth as utils_auth, \
    data as utils_data, \
    db as utils_db, \
    app as utils_app, \
    notifications as utils_notifications, \
    exceptions
from chalicelib.utils.logger import logger

RATING_PRECISION = Decimal('0.1')


class Review(EntityBase):
    pk = keys_structure.reviews_pk
    sk = keys_structure.reviews_sk

    required_immutable_fields_validation = {
        'id_': lambda x: isinstance(x, str),
        'order_id': lambda x: isinstance(x, str),
        'restaurant_id': lambda x: isinstance(x, str),
        'user_id': lambda x: isinstance(x, str),
        'rating': lambda x: isinstance(x, int) and not isinstance(x, bool) and 1 <= x <= 5,
        'date_created': lambda x: isinstance(x, str)
    }

    optional_fields_validation = {
        'comment_': lambda x: isinstance(x, str)
    }

    def __init__(self, company_id, id_, **kwargs):
        EntityBase.__init__(self, company_id, id_)

        self.order_id: str = kwargs.get('order_id') or id_
        self.restaurant_id: str = kwargs.get('restaurant_id')
        self.user_id: str = kwargs.get('user_id')
        self.rating: int = int(kwargs['rating']) if kwargs.get('rating') is not None else None
        self.comment_: str = kwargs.get('comment_')
        self.date_created: str = kwargs.get('date_created') or datetime.now().isoformat(timespec='seconds')
        self.record_type = 'review'

    def _get_pk_sk(self) -> Tuple[str, str]:
        return self.pk.format(company_id=self.company_id, restaurant_id=self.restaurant_id), \
            self.sk.format(order_id=self.order_id)

    def _to_dict(self):
        return {
            'id_': self.id_,
            'order_id': self.order_id,
            'restaurant_id': self.restaurant_id,
            'user_id': self.user_id,
            'rating': self.rating,
            'comment_': self.comment_,
            'date_created': self.date_created
        }


@dataclass(frozen=True)
class RatingSummary:
    rating: Optional[Decimal]
    rating_count: int


def validate_rating(rating) -> int:
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise exceptions.InvalidRatingError(f'Rating must be an integer between 1 and 5, got {rating!r}')
    return rating


def average_rating(ratings: List[int]) -> Optional[Decimal]:
    """ arithmetic mean rounded half away from zero to one decimal """
    if not ratings:
        return None
    return (Decimal(sum(ratings)) / Decimal(len(ratings))).quantize(RATING_PRECISION, rounding=ROUND_HALF_UP)


def list_restaurant_reviews(company_id, restaurant_id, consistent_read=False) -> List[Review]:
    records = utils_db.query_items_paged(
        Key('partkey').eq(keys_structure.reviews_pk.format(company_id=company_id, restaurant_id=restaurant_id)),
        consistent_read=consistent_read
    )
    return [Review(**record) for record in records]


def recompute_restaurant_rating(company_id, restaurant_id) -> RatingSummary:
    """
    Mean of all reviews of the restaurant, read consistently.
    The write is skipped by the db when another writer already stored a rating
    computed from more reviews
    """
    ratings = [review.rating for review in list_restaurant_reviews(company_id, restaurant_id, consistent_read=True)]
    summary = RatingSummary(average_rating(ratings), len(ratings))
    if summary.rating is None:
        return summary
    try:
        utils_db.update_db_item(
            key={'partkey': keys_structure.restaurants_pk.format(company_id=company_id),
                 'sortkey': keys_structure.restaurants_sk.format(restaurant_id=restaurant_id)},
            update_expression='SET rating = :rating, rating_count = :rating_count',
            expr_attr_values={':rating': summary.rating, ':rating_count': summary.rating_count},
            condition_expression='attribute_exists(partkey) AND '
                                 '(attribute_not_exists(rating_count) OR rating_count <= :rating_count)'
        )
    except ClientError as error:
        if not utils_db.is_conditional_check_failed(error):
            raise
        record = utils_db.find_db_item(keys_structure.restaurants_pk.format(company_id=company_id),
                                       keys_structure.restaurants_sk.format(restaurant_id=restaurant_id),
                                       consistent_read=True)
        if record is None:
            raise exceptions.RestaurantNotFound(f'Restaurant {restaurant_id} not found')
        logger.info(f'recompute_restaurant_rating ::: restaurant {restaurant_id} already rated from '
                    f'{record.get("rating_count")} reviews, keeping it')
        return RatingSummary(record.get('rating'), int(record.get('rating_count', 0)))

    logger.info(f'recompute_restaurant_rating ::: restaurant {restaurant_id} {summary=}')
    return summary


def record_review(company_id, order_id, rating, comment: Optional[str] = None,
                  user_id: Optional[str] = None) -> Tuple[Review, RatingSummary]:
    rating = validate_rating(rating)
    order = Order.find_by_id(company_id, order_id, consistent_read=True)
    if order is None or (user_id is not None and order.user_id != user_id):
        raise exceptions.OrderNotFound(f'Order {order_id} not found')
    if order.status_ != OrderStatus.DELIVERED.value:
        raise exceptions.OrderNotDeliverableError(f'Only delivered orders can be rated, order {order_id} is '
                                                  f'{order.status_}', status=order.status_)

    review = Review(
        company_id=company_id,
        id_=order_id,
        order_id=order_id,
        restaurant_id=order.restaurant_id,
        user_id=order.user_id,
        rating=rating,
        comment_=comment
    )
    try:
        review._create_db_record()
    except ClientError as error:
        if not utils_db.is_conditional_check_failed(error):
            raise
        raise exceptions.DuplicateReviewError(f'Order {order_id} has already been rated', order_id=order_id)

    return review, recompute_restaurant_rating(company_id, order.restaurant_id)


def get_order_review(company_id, order_id, user_id: Optional[str] = None) -> Optional[Review]:
    """ review left for the order, None when the order was not rated yet """
    order = Order.find_by_id(company_id, order_id)
    if order is None or (user_id is not None and order.user_id != user_id):
        raise exceptions.OrderNotFound(f'Order {order_id} not found')
    record = utils_db.find_db_item(
        keys_structure.reviews_pk.format(company_id=company_id, restaurant_id=order.restaurant_id),
        keys_structure.reviews_sk.format(order_id=order_id)
    )
    return Review(**record) if record else None


@utils_app.log_start_finish
@utils_auth.authenticate
@utils_app.request_exception_handler
def endpoint_create_review(request, order_id):
    auth_result = request.auth_result
    request_body = utils_data.parse_raw_body(request)
    review, summary = record_review(
        auth_result['company_id'],
        order_id,
        request_body.get('rating'),
        comment=request_body.get('comment'),
        user_id=auth_result['user_id']
    )
    return Response(status_code=http200, body={'message': 'Rating submitted successfully', 'review': review.to_ui(),
                                               'restaurant_rating': summary.rating,
                                               'rating_count': summary.rating_count})


@utils_app.log_start_finish
@utils_auth.authenticate
@utils_app.request_exception_handler
def endpoint_get_order_review(request, order_id):
    auth_result = request.auth_result
    review = get_order_review(auth_result['company_id'], order_id, user_id=auth_result['user_id'])
    return Response(status_code=http200, body={'has_rating': review is not None,
                                               'review': review.to_ui() if review else None})


@utils_app.log_start_finish
@utils_app.request_exception_handler
def endpoint_get_restaurant_reviews(request, restaurant_id):
    company_id = utils_auth.get_company_id_by_request(request)
    reviews: List[Dict] = [
        review.to_ui() for review in sorted(list_restaurant_reviews(company_id, restaurant_id),
                                            key=lambda review: review.date_created, reverse=True)
    ]
    return Response(status_code=http200, body=reviews)


@utils_app.log_start_finish
def db_trigger_review_record(record_old: dict, record_new: dict, event_id: str, event_name: str):
    logger.info(f'db_trigger_review_record ::: review_record={record_new}, {event_id=}, {event_name=}')
    if event_name.lower() != 'insert':
        return None
    return utils_notifications.publish_event('review_recorded', {
        'company_id': record_new.get('company_id'),
        'order_id': record_new.get('order_id'),
        'restaurant_id': record_new.get('restaurant_id'),
        'user_id': record_new.get('user_id'),
        'rating': record_new.get('rating')
    })
