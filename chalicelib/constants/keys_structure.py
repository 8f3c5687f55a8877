users_pk = 'users_{company_id}'
users_sk = '{user_id}'

accounts_pk = 'accounts_{company_id}'
accounts_sk = '{user_id}'

transfers_pk = 'transfers_{company_id}'
transfers_sk = '{transfer_id}'

restaurants_pk = 'restaurants_{company_id}'
restaurants_sk = '{restaurant_id}'

menu_items_pk = 'menu_items_{company_id}_{restaurant_id}'
menu_items_sk = '{menu_item_id}'

orders_pk = 'orders_{company_id}'
orders_sk = '{order_id}'

reviews_pk = 'reviews_{company_id}_{restaurant_id}'
reviews_sk = '{order_id}'
