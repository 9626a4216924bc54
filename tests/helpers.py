"""Helpers shared by the socket tests"""

TEST_CONFIG = {
    'TESTING': True,
    'SECRET_KEY': 'test-secret',
    'SQLALCHEMY_DATABASE_URI': 'sqlite://',
    'SOCKETIO_ASYNC_MODE': 'threading',
    'LOG_FILE': None,
    'LOG_LEVEL': 'DEBUG',
}


def events(received, name):
    """Payload of every event called ``name`` in a get_received() list.

    The test client keeps the payload of ``message`` and ``json`` packets
    as is; every other event gets a list of arguments.
    """
    found = []
    for item in received:
        if item['name'] != name:
            continue
        if name in ('message', 'json'):
            found.append(item['args'])
        else:
            found.append(item['args'][0] if item['args'] else None)
    return found


def names(received):
    return [item['name'] for item in received]


def room_message(room_id, text='hello', **extra):
    message = {
        'msgId': '',
        'talkerId': 0,
        'listenerId': 0,
        'roomId': room_id,
        'text': {'message': text, 'image': ''},
        'timestamp': 0,
        'type': 1,
        'mentionIdList': '',
    }
    message.update(extra)
    return {'message': message}
