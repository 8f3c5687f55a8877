from decimal import Decimal

import pytest

from chalicelib import reviews
from chalicelib.constants import keys_structure
from chalicelib.orders import Order
from chalicelib.restaurants import Restaurant
from chalicelib.reviews import RatingSummary, average_rating, record_review
from chalicelib.utils import exceptions

from test.utils.fixtures import aws_environment, gen_table, test_company_id, id_user, create_test_restaurant

restaurant_id = 'restaurant-1'


def create_test_order(order_id, status='DELIVERED', user_id=id_user) -> Order:
    order = Order(
        company_id=test_company_id,
        id_=order_id,
        user_id=user_id,
        restaurant_id=restaurant_id,
        items=[{'menu_item_id': 'schawarma', 'title': 'Schawarma', 'quantity': 1, 'unit_price': Decimal('10.00')}],
        subtotal=Decimal('10.00'),
        service_fee=Decimal('1.50'),
        amount=Decimal('11.50'),
        status_=status,
        estimated_delivery='2024-05-01T12:30:00',
        courier_type='CYCLE'
    )
    order._create_db_record()
    return order


@pytest.mark.parametrize('ratings, expected', [
    ([4, 4, 4, 5], Decimal('4.3')),
    ([4, 5], Decimal('4.5')),
    ([1, 2, 2], Decimal('1.7')),
    ([5], Decimal('5.0')),
    ([1, 1, 1, 1, 1, 1, 1, 2], Decimal('1.1')),
])
def test_average_rating(ratings, expected):
    assert average_rating(ratings) == expected


def test_average_rating_without_reviews():
    assert average_rating([]) is None


def test_record_review_updates_restaurant_rating(gen_table):
    create_test_restaurant(restaurant_id)
    for number, rating in enumerate([4, 4, 4, 5]):
        create_test_order(f'order-{number}')
        review, summary = record_review(test_company_id, f'order-{number}', rating, comment='tasty', user_id=id_user)
        assert review.rating == rating

    assert summary == RatingSummary(Decimal('4.3'), 4)
    restaurant = Restaurant.init_get_by_id(test_company_id, restaurant_id)
    assert restaurant.rating == Decimal('4.3')
    assert restaurant.rating_count == 4

    stored = reviews.list_restaurant_reviews(test_company_id, restaurant_id)
    assert sorted(review.order_id for review in stored) == ['order-0', 'order-1', 'order-2', 'order-3']
    assert {review.comment_ for review in stored} == {'tasty'}


def test_record_duplicate_review(gen_table):
    create_test_restaurant(restaurant_id)
    create_test_order('order-1')
    record_review(test_company_id, 'order-1', 5)

    with pytest.raises(exceptions.DuplicateReviewError):
        record_review(test_company_id, 'order-1', 1)

    assert Restaurant.init_get_by_id(test_company_id, restaurant_id).rating == Decimal('5.0')
    assert len(reviews.list_restaurant_reviews(test_company_id, restaurant_id)) == 1


@pytest.mark.parametrize('status', ['PENDING', 'CONFIRMED', 'READY', 'OUT_FOR_DELIVERY', 'CANCELLED'])
def test_review_of_undelivered_order(gen_table, status):
    create_test_restaurant(restaurant_id)
    create_test_order('order-1', status=status)

    with pytest.raises(exceptions.OrderNotDeliverableError):
        record_review(test_company_id, 'order-1', 4)

    assert reviews.list_restaurant_reviews(test_company_id, restaurant_id) == []


@pytest.mark.parametrize('rating', [0, 6, -1, True, '5', Decimal('4.5'), 4.0, None])
def test_invalid_rating(gen_table, rating):
    create_test_restaurant(restaurant_id)
    create_test_order('order-1')

    with pytest.raises(exceptions.InvalidRatingError):
        record_review(test_company_id, 'order-1', rating)

    assert reviews.list_restaurant_reviews(test_company_id, restaurant_id) == []


def test_review_of_other_customer_order(gen_table):
    create_test_restaurant(restaurant_id)
    create_test_order('order-1', user_id='someone-else')

    with pytest.raises(exceptions.OrderNotFound):
        record_review(test_company_id, 'order-1', 4, user_id=id_user)
    with pytest.raises(exceptions.OrderNotFound):
        record_review(test_company_id, 'missing-order', 4, user_id=id_user)


def test_rating_computed_from_fewer_reviews_is_not_stored(gen_table):
    create_test_restaurant(restaurant_id)
    gen_table.update_item(
        Key={'partkey': keys_structure.restaurants_pk.format(company_id=test_company_id),
             'sortkey': keys_structure.restaurants_sk.format(restaurant_id=restaurant_id)},
        UpdateExpression='SET rating = :rating, rating_count = :rating_count',
        ExpressionAttributeValues={':rating': Decimal('4.8'), ':rating_count': 10}
    )
    create_test_order('order-1')

    _, summary = record_review(test_company_id, 'order-1', 1)

    assert summary == RatingSummary(Decimal('4.8'), 10)
    assert Restaurant.init_get_by_id(test_company_id, restaurant_id).rating == Decimal('4.8')


def test_get_order_review(gen_table):
    create_test_restaurant(restaurant_id)
    create_test_order('order-1')

    assert reviews.get_order_review(test_company_id, 'order-1', user_id=id_user) is None

    record_review(test_company_id, 'order-1', 4, comment='a bit cold', user_id=id_user)

    review = reviews.get_order_review(test_company_id, 'order-1', user_id=id_user)
    assert review.rating == 4
    assert review.comment_ == 'a bit cold'
    assert review.restaurant_id == restaurant_id
    with pytest.raises(exceptions.OrderNotFound):
        reviews.get_order_review(test_company_id, 'order-1', user_id='someone-else')
    with pytest.raises(exceptions.OrderNotFound):
        reviews.get_order_review(test_company_id, 'missing-order')
