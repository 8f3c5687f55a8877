to_db = {
    'id': 'id_',
    'name': 'name_',
    'status': 'status_',
    'comment': 'comment_',
    'permissions': 'permissions_'
}

from_db = {
    'partkey': None,
    'sortkey': None,
    'id_': 'id',
    'name_': 'name',
    'status_': 'status',
    'comment_': 'comment',
    'permissions_': 'permissions',
    'version_': None
}
