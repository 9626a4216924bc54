"""
HTTP API under /api
"""
import logging
from flask import Blueprint, jsonify, request, current_app
from errors import ValidationError
from models import MAX_ID
from protocol import parse_message, message_event, optional_id

logger = logging.getLogger(__name__)

api = Blueprint('api', __name__, url_prefix='/api')


def _gateway():
    return current_app.extensions['chat_gateway']


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("request body must be a JSON object")
    return data


def _int_arg(name):
    value = request.args.get(name)
    if value is None:
        return None
    try:
        number = int(value)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")
    if not 0 < number <= MAX_ID:
        raise ValidationError(f"{name} must be a positive integer")
    return number


@api.route('/ping')
def ping():
    return jsonify({'message': 'pong', 'online': len(_gateway().online_user_ids())})


# ---------------------------------------------------------------- users

@api.route('/users', methods=['GET'])
def list_users():
    return jsonify([user.to_dict() for user in _gateway().directory.list()])


@api.route('/users', methods=['POST'])
def create_user():
    data = _json_body()
    user = _gateway().directory.create(data.get('name'), data.get('email'))
    return jsonify(user.to_dict()), 201


@api.route('/users/<user_id>', methods=['GET'])
def get_user(user_id):
    return jsonify(_gateway().directory.get(user_id).to_dict())


@api.route('/users/<user_id>', methods=['PUT'])
def update_user(user_id):
    user = _gateway().directory.update(user_id, _json_body())
    return jsonify(user.to_dict())


@api.route('/users/<user_id>', methods=['DELETE'])
def delete_user(user_id):
    directory = _gateway().directory
    user = directory.get(user_id)
    deleted_id = user.id
    directory.delete(deleted_id)
    return jsonify({'deleted': deleted_id})


# ---------------------------------------------------------------- friends

@api.route('/users/<user_id>/friends', methods=['GET'])
def list_friends(user_id):
    return jsonify([entry.to_dict() for entry in _gateway().friends.list_friends(user_id)])


@api.route('/users/<user_id>/friends', methods=['POST'])
def add_friend(user_id):
    data = _json_body()
    friend_id = optional_id(data.get('friendId'), 'friendId')
    if friend_id is None:
        raise ValidationError("friendId is required")
    entry = _gateway().friends.add(user_id, friend_id, alias=data.get('alias'),
                                   is_private=data.get('isPrivate', False))
    return jsonify(entry.to_dict()), 201


@api.route('/users/<user_id>/friends/<int:friend_id>', methods=['PATCH'])
def update_friend(user_id, friend_id):
    data = _json_body()
    entry = _gateway().friends.update(user_id, friend_id, alias=data.get('alias'),
                                      is_private=data.get('isPrivate'))
    return jsonify(entry.to_dict())


@api.route('/users/<user_id>/friends/<int:friend_id>', methods=['DELETE'])
def remove_friend(user_id, friend_id):
    _gateway().friends.remove(user_id, friend_id)
    return jsonify({'deleted': friend_id})


# ---------------------------------------------------------------- rooms

@api.route('/rooms', methods=['GET'])
def list_rooms():
    return jsonify([room.to_dict() for room in _gateway().rooms.list_rooms()])


@api.route('/rooms', methods=['POST'])
def create_room():
    data = _json_body()
    members = data.get('members') or []
    if not isinstance(members, list):
        raise ValidationError("members must be a list of user ids")
    room = _gateway().rooms.create_room(data.get('name'), owner_id=data.get('ownerId'), member_ids=members)
    return jsonify(room.to_dict()), 201


@api.route('/rooms/<room_id>', methods=['GET'])
def get_room(room_id):
    return jsonify(_gateway().rooms.get(room_id).to_dict())


@api.route('/rooms/<room_id>', methods=['PUT'])
def update_room(room_id):
    data = _json_body()
    by_user = optional_id(data.get('userId'), 'userId')
    room = _gateway().rooms.update_room(room_id, data.get('name'), by_user=by_user)
    return jsonify(room.to_dict())


@api.route('/rooms/<room_id>', methods=['DELETE'])
def delete_room(room_id):
    gateway = _gateway()
    by_user = optional_id(request.args.get('userId'), 'userId')
    deleted_id = gateway.rooms.delete_room(room_id, by_user=by_user)
    gateway.forget_room(deleted_id)
    return jsonify({'deleted': deleted_id})


@api.route('/rooms/<room_id>/members', methods=['GET'])
def room_members(room_id):
    return jsonify(sorted(_gateway().rooms.get_members(room_id)))


@api.route('/rooms/<room_id>/members/<int:user_id>', methods=['PUT'])
def add_room_member(room_id, user_id):
    room = _gateway().rooms.add_member(room_id, user_id)
    return jsonify(room.to_dict())


@api.route('/rooms/<room_id>/members/<int:user_id>', methods=['DELETE'])
def remove_room_member(room_id, user_id):
    room = _gateway().rooms.remove_member(room_id, user_id)
    return jsonify(room.to_dict())


@api.route('/rooms/<room_id>/members/<int:user_id>', methods=['PATCH'])
def update_room_member(room_id, user_id):
    data = _json_body()
    membership = _gateway().rooms.update_member(room_id, user_id, alias=data.get('alias'),
                                                is_private=data.get('isPrivate'))
    return jsonify(membership.to_dict())


@api.route('/rooms/<room_id>/aliases', methods=['GET'])
def room_aliases(room_id):
    viewer_id = optional_id(request.args.get('viewerId'), 'viewerId')
    aliases = _gateway().rooms.member_aliases(room_id, viewer_id=viewer_id)
    return jsonify({str(user_id): alias for user_id, alias in aliases.items()})


@api.route('/rooms/<room_id>/messages', methods=['GET'])
def room_messages(room_id):
    gateway = _gateway()
    room = gateway.rooms.get(room_id)
    limit = _int_arg('limit') or current_app.config['HISTORY_LIMIT']
    messages = gateway.history.get_history(room.id, limit=limit, before=_int_arg('before'))
    return jsonify([m.to_dict() for m in messages])


# ---------------------------------------------------------------- messages

@api.route('/message', methods=['POST'])
def post_message():
    """Send a message without a socket. The sender comes from talkerId."""
    gateway = _gateway()
    message = parse_message(_json_body())
    gateway.directory.get(message.talker_id)
    logger.info(f"Message from user {message.talker_id} received over HTTP")
    stored = gateway.deliver(message)
    return jsonify(message_event(stored)), 201
