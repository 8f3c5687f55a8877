import os

from chalice import Chalice, Response

from chalicelib import accounts, discovery, orders, menu_items, restaurants, reviews, users, triggers
from chalicelib.constants.status_codes import http200

app = Chalice(app_name='food-marketplace')

app.debug = os.environ.get('DEBUG', 'false').lower() == 'true'


def get_gen_table_stream_arn():
    return os.environ.get('GEN_TABLE_STREAM_ARN', '')


@app.on_dynamodb_record(stream_arn=get_gen_table_stream_arn())
def db_gen_table_stream_trigger(event):
    return triggers.db_gen_table_stream_trigger(event)


@app.route('/health-check', methods=['GET'], cors=True)
def health_check():
    return Response(status_code=http200, body={'status': 'ok'})


# USERS
@app.route('/users', methods=['GET'], cors=True)
def get_user():
    return users.endpoint_get_user(app.current_request)


@app.route('/users/location', methods=['PUT'], cors=True)
def update_user_location():
    return users.endpoint_update_location(app.current_request)


# ACCOUNTS
@app.route('/accounts/balance', methods=['GET'], cors=True)
def get_balance():
    return accounts.endpoint_get_balance(app.current_request)


@app.route('/accounts/{user_id}/deposit', methods=['POST'], cors=True)
def deposit(user_id):
    """
    admin operation
    """
    return accounts.endpoint_deposit(app.current_request, user_id)


# RESTAURANTS
@app.route('/restaurants', methods=['GET'], cors=True)
def get_restaurants():
    return restaurants.endpoint_get_all(app.current_request)


@app.route('/restaurants/with-distance', methods=['POST'], cors=True)
def get_restaurants_with_distance():
    """
    restaurants ordered by distance from the address in the body,
    the profile address of the caller or the most popular location
    """
    return discovery.endpoint_get_with_distance(app.current_request)


@app.route('/restaurants/{restaurant_id}', methods=['GET'], cors=True)
def get_restaurant_by_id(restaurant_id):
    return restaurants.endpoint_get_by_id(app.current_request, restaurant_id)


@app.route('/restaurants', methods=['POST'], cors=True)
def create_restaurant():
    """
    admin operation
    """
    return restaurants.endpoint_create(app.current_request)


@app.route('/restaurants/{restaurant_id}/reviews', methods=['GET'], cors=True)
def get_restaurant_reviews(restaurant_id):
    return reviews.endpoint_get_restaurant_reviews(app.current_request, restaurant_id)


# MENU ITEMS
@app.route('/menu-items/{restaurant_id}', methods=['GET'], cors=True)
def get_restaurant_menu(restaurant_id):
    return menu_items.endpoint_get_menu_items(app.current_request, restaurant_id)


@app.route('/menu-items/{restaurant_id}', methods=['POST'], cors=True)
def create_menu_item(restaurant_id):
    """
    restaurant manager operation
    """
    return menu_items.endpoint_create_menu_item(app.current_request, restaurant_id)


# ORDERS
@app.route('/orders', methods=['POST'], cors=True)
def create_order():
    """
    The order is paid from the customer's balance when it is created
    """
    return orders.endpoint_create_order(app.current_request)


@app.route('/orders', methods=['GET'], cors=True)
def get_orders():
    """
    user can get own orders
    """
    return orders.endpoint_get_orders(app.current_request)


@app.route('/orders/{order_id}', methods=['GET'], cors=True)
def get_order_by_id(order_id):
    return orders.endpoint_get_order(app.current_request, order_id)


@app.route('/orders/restaurant/{restaurant_id}', methods=['GET'], cors=True)
def get_restaurant_orders(restaurant_id):
    """
    restaurant manager can get restaurant's orders (needs permissions to manage the restaurant)
    admin can get restaurant's orders by restaurant_id
    """
    return orders.endpoint_get_restaurant_orders(app.current_request, restaurant_id)


@app.route('/orders/restaurant/{restaurant_id}/{order_id}/status', methods=['PUT'], cors=True)
def update_order_status(restaurant_id, order_id):
    """
    restaurant manager operation
    """
    return orders.endpoint_update_status(app.current_request, restaurant_id, order_id)


@app.route('/orders/{order_id}/review', methods=['POST'], cors=True)
def create_order_review(order_id):
    """
    customer can rate own delivered order once
    """
    return reviews.endpoint_create_review(app.current_request, order_id)


@app.route('/orders/{order_id}/review', methods=['GET'], cors=True)
def get_order_review(order_id):
    """
    tells the customer whether the order was already rated
    """
    return reviews.endpoint_get_order_review(app.current_request, order_id)
