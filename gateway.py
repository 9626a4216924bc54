"""
Realtime session gateway.

One Session per Socket.IO connection, bound to a directory user on connect.
Inbound events are routed through an explicit handler table; every handler
is wrapped so a failure becomes an ``error`` event for that session only.

Delivery is at-most-once: a message is pushed to the sessions that are
connected when it is stored, and nobody else ever receives it.
"""
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import Optional

from flask import request
from flask_socketio import emit, join_room, ConnectionRefusedError

from models import db, MAX_ID
from errors import ChatError, ValidationError, InternalError
from history import conversation_key
from protocol import Event, decode_payload, optional_id, parse_message, message_event

logger = logging.getLogger(__name__)


class SessionState(Enum):
    CONNECTING = 'connecting'
    CONNECTED = 'connected'
    DISCONNECTED = 'disconnected'


@dataclass
class Session:
    sid: str
    user_id: Optional[int] = None
    state: SessionState = SessionState.CONNECTING
    room_id: Optional[int] = None


def user_channel(user_id):
    return f"user:{user_id}"


def _payload_dict(payload):
    data = decode_payload(payload)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("payload must be a JSON object")
    return data


def _optional_flag(payload):
    """``receive``/``email`` accept nothing (toggle), a bool, or {"enabled": bool}"""
    data = decode_payload(payload)
    if isinstance(data, dict):
        data = data.get('enabled')
    if data is not None and not isinstance(data, bool):
        raise ValidationError("expected a boolean")
    return data


def _required_id(data, field):
    value = optional_id(data.get(field), field)
    if value is None:
        raise ValidationError(f"{field} is required")
    return value


def _required_flag(data, field):
    value = data.get(field)
    if not isinstance(value, bool):
        raise ValidationError(f"{field} must be a boolean")
    return value


def _required_alias(data):
    alias = data.get('alias')
    if alias is None:
        raise ValidationError("alias is required")
    return alias


def _positive_int(value, field, default=None):
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or not 0 < value <= MAX_ID:
        raise ValidationError(f"{field} must be a positive integer")
    return value


class Gateway:

    def __init__(self, socketio, directory, rooms, history, friends, history_limit=400):
        self.socketio = socketio
        self.directory = directory
        self.rooms = rooms
        self.history = history
        self.friends = friends
        self.history_limit = history_limit

        self.sessions = {}
        self._sessions_lock = threading.Lock()
        self._registered = False
        self.running = False

        self.handlers = {
            Event.SELF: self.on_self,
            Event.RECEIVE: self.on_receive,
            Event.EMAIL: self.on_email,
            Event.MESSAGE: self.on_message,
            Event.GET_CHATS: self.on_get_chats,
            Event.GET_ROOMS: self.on_get_rooms,
            Event.GET_USERS: self.on_get_users,
            Event.GET_FRIENDS: self.on_get_friends,
            Event.GET_ROOM_BY_USERS: self.on_get_room_by_users,
            Event.JOIN: self.on_join,
            Event.UPDATE_USER: self.on_update_user,
            Event.DELETE_USER: self.on_delete_user,
            Event.CREATE_ROOM: self.on_create_room,
            Event.UPDATE_ROOM: self.on_update_room,
            Event.DELETE_ROOM: self.on_delete_room,
            Event.ADD_USER_TO_ROOM: self.on_add_user_to_room,
            Event.REMOVE_USER_FROM_ROOM: self.on_remove_user_from_room,
            Event.UPDATE_ROOM_ALIAS: self.on_update_room_alias,
            Event.SET_ROOM_PRIVACY: self.on_set_room_privacy,
            Event.ADD_FRIEND: self.on_add_friend,
            Event.REMOVE_FRIEND: self.on_remove_friend,
            Event.UPDATE_FRIEND_ALIAS: self.on_update_friend_alias,
            Event.SET_FRIEND_PRIVACY: self.on_set_friend_privacy,
        }

    # ---------------------------------------------------------------- lifecycle

    def start(self):
        if not self._registered:
            self.socketio.on_event(Event.CONNECT.value, self.on_connect)
            self.socketio.on_event(Event.DISCONNECT.value, self.on_disconnect)
            for event, handler in self.handlers.items():
                self.socketio.on_event(event.value, self._guarded(event, handler))
            self._registered = True
        self.running = True
        logger.info(f"Gateway started with {len(self.handlers)} event handlers")

    def stop(self):
        self.running = False
        with self._sessions_lock:
            sids = list(self.sessions)
        for sid in sids:
            self.socketio.server.disconnect(sid, namespace='/')
        with self._sessions_lock:
            for session in self.sessions.values():
                session.state = SessionState.DISCONNECTED
            self.sessions.clear()
        logger.info(f"Gateway stopped, closed {len(sids)} sessions")

    def online_user_ids(self):
        with self._sessions_lock:
            return {s.user_id for s in self.sessions.values() if s.state is SessionState.CONNECTED}

    # ---------------------------------------------------------------- connection

    def _identify(self, auth):
        user_id = None
        if isinstance(auth, dict):
            user_id = auth.get('userId')
        if user_id is None:
            user_id = request.args.get('userId')
        if user_id is None:
            raise ValidationError("userId is required to connect")
        return self.directory.get(user_id)

    def on_connect(self, auth=None):
        sid = request.sid
        if not self.running:
            raise ConnectionRefusedError('server is shutting down')

        session = Session(sid=sid)
        try:
            user = self._identify(auth)
        except ChatError as e:
            logger.warning(f"Refused connection {sid}: {e.message}")
            raise ConnectionRefusedError(e.to_dict())

        session.user_id = user.id
        session.state = SessionState.CONNECTED
        with self._sessions_lock:
            self.sessions[sid] = session
        join_room(user_channel(user.id))
        logger.info(f"User {user.id} ({user.name}) connected to socket: {sid}")

        emit(Event.RECEIVE.value, user.receive_device)
        emit(Event.EMAIL.value, user.email_note)
        emit(Event.SELF.value, user.to_dict())

    def on_disconnect(self, reason=None):
        sid = request.sid
        with self._sessions_lock:
            session = self.sessions.pop(sid, None)
        if session is None:
            return
        session.state = SessionState.DISCONNECTED
        logger.info(f"User {session.user_id} disconnected from socket: {sid} ({reason or 'client'})")

    def _guarded(self, event, handler):
        @wraps(handler)
        def wrapper(*args):
            sid = request.sid
            with self._sessions_lock:
                session = self.sessions.get(sid)
            try:
                if session is None or session.state is not SessionState.CONNECTED:
                    raise ValidationError("session is not connected")
                return handler(session, *args)
            except ChatError as e:
                db.session.rollback()
                logger.warning(f"{event.value} from {sid} rejected: {e.kind}: {e.message}")
                emit(Event.ERROR.value, e.to_dict())
            except Exception:
                db.session.rollback()
                logger.exception(f"Error handling {event.value} for session {sid}")
                emit(Event.ERROR.value, InternalError(f"{event.value} failed").to_dict())
        return wrapper

    # ---------------------------------------------------------------- delivery

    def deliver(self, message, skip_sid=None):
        """Store a message and push it to every online session that should see it.

        The conversation lock is held across append and fan-out, so every
        recipient observes messages of one room in append order.
        """
        if message.room_id is not None:
            self.rooms.get(message.room_id)
            if not self.rooms.is_member(message.room_id, message.talker_id):
                raise ValidationError(f"user {message.talker_id} is not a member of room {message.room_id}")
        else:
            self.directory.get(message.listener_id)

        with self.history.locked(conversation_key(message)):
            stored = self.history.append(message)
            if stored.room_id is not None:
                recipients = self.rooms.get_members(stored.room_id)
            else:
                recipients = {stored.talker_id, stored.listener_id}

            payload = message_event(stored)
            online = self.online_user_ids()
            for user_id in sorted(recipients & online):
                self.socketio.emit(Event.MESSAGE.value, payload, to=user_channel(user_id), skip_sid=skip_sid)

        offline = recipients - online
        if offline:
            logger.debug(f"Message {stored.msg_id} not pushed to {len(offline)} offline users")
        logger.info(f"Delivered message {stored.id} from {stored.talker_id} to "
                    f"{'room ' + str(stored.room_id) if stored.room_id else 'user ' + str(stored.listener_id)}")
        return stored

    # ---------------------------------------------------------------- handlers

    def on_self(self, session, payload=None):
        user = self.directory.get(session.user_id).to_dict()
        emit(Event.SELF.value, user)
        return user

    def on_receive(self, session, payload=None):
        flag = self.directory.set_preference(session.user_id, 'receive_device', _optional_flag(payload))
        emit(Event.RECEIVE.value, flag)
        return flag

    def on_email(self, session, payload=None):
        flag = self.directory.set_preference(session.user_id, 'email_note', _optional_flag(payload))
        emit(Event.EMAIL.value, flag)
        return flag

    def on_message(self, session, payload=None):
        if payload is None:
            raise ValidationError("message payload is required")
        message = parse_message(payload, talker_id=session.user_id)
        stored = self.deliver(message, skip_sid=session.sid)
        return message_event(stored)

    def on_get_chats(self, session, payload=None):
        data = _payload_dict(payload)
        explicit_room = optional_id(data.get('roomId'), 'roomId')
        listener_id = optional_id(data.get('listenerId'), 'listenerId')
        if explicit_room is not None and listener_id is not None:
            raise ValidationError("ask for a room or a conversation, not both")
        room_id = explicit_room or session.room_id
        limit = _positive_int(data.get('limit'), 'limit', self.history_limit)
        before = _positive_int(data.get('before'), 'before')

        if listener_id is not None:
            self.directory.get(listener_id)
            messages = self.history.get_conversation(session.user_id, listener_id, limit=limit, before=before)
        elif room_id is not None:
            self._require_membership(room_id, session.user_id)
            messages = self.history.get_history(room_id, limit=limit, before=before)
        else:
            messages = self.history.get_chats_for_user(session.user_id, limit=limit)

        chats = [m.to_dict() for m in messages]
        emit(Event.GET_CHATS.value, chats)
        return chats

    def on_get_rooms(self, session, payload=None):
        rooms = [r.to_dict() for r in self.rooms.list_rooms()]
        emit(Event.GET_ROOMS.value, rooms)
        return rooms

    def on_get_users(self, session, payload=None):
        users = [u.to_dict() for u in self.directory.list()]
        emit(Event.GET_USERS.value, users)
        return users

    def on_join(self, session, payload=None):
        room_id = _required_id(_payload_dict(payload), 'roomId')
        room = self._require_membership(room_id, session.user_id)
        session.room_id = room.id
        logger.info(f"Session {session.sid} switched to room {room.id}")
        data = room.to_dict()
        emit(Event.JOIN.value, data)
        return data

    def on_create_room(self, session, payload=None):
        data = _payload_dict(payload)
        members = data.get('members') or []
        if not isinstance(members, list):
            raise ValidationError("members must be a list of user ids")
        member_ids = [optional_id(m, 'members') for m in members]
        room = self.rooms.create_room(data.get('name'), owner_id=session.user_id,
                                      member_ids=[m for m in member_ids if m is not None])
        result = room.to_dict()
        emit(Event.ROOM_CREATED.value, result)
        return result

    def on_add_user_to_room(self, session, payload=None):
        room_id, user_id = self._membership_args(session, payload)
        self.rooms.add_member(room_id, user_id)
        result = {'roomId': room_id, 'userId': user_id}
        emit(Event.USER_ADDED_TO_ROOM.value, result)
        return result

    def on_remove_user_from_room(self, session, payload=None):
        room_id, user_id = self._membership_args(session, payload)
        self.rooms.remove_member(room_id, user_id)
        self.forget_room(room_id, user_id)
        result = {'roomId': room_id, 'userId': user_id}
        emit(Event.USER_REMOVED_FROM_ROOM.value, result)
        return result

    def on_get_room_by_users(self, session, payload=None):
        room_id = _required_id(_payload_dict(payload), 'roomId')
        self._require_membership(room_id, session.user_id)
        aliases = self.rooms.member_aliases(room_id, viewer_id=session.user_id)
        # JSON object keys are strings
        result = {str(user_id): alias for user_id, alias in aliases.items()}
        emit(Event.GET_ROOM_BY_USERS.value, result)
        return result

    def on_update_room(self, session, payload=None):
        data = _payload_dict(payload)
        room = self.rooms.update_room(_required_id(data, 'roomId'), data.get('name'), by_user=session.user_id)
        result = room.to_dict()
        emit(Event.ROOM_UPDATED.value, result)
        return result

    def on_delete_room(self, session, payload=None):
        room_id = _required_id(_payload_dict(payload), 'roomId')
        self.rooms.delete_room(room_id, by_user=session.user_id)
        self.forget_room(room_id)
        result = {'roomId': room_id}
        emit(Event.ROOM_DELETED.value, result)
        return result

    def on_update_room_alias(self, session, payload=None):
        data = _payload_dict(payload)
        room_id = _required_id(data, 'roomId')
        membership = self.rooms.update_member(room_id, session.user_id, alias=_required_alias(data))
        result = {'roomId': room_id, 'userId': session.user_id, 'alias': membership.alias}
        emit(Event.ROOM_ALIAS_UPDATED.value, result)
        return result

    def on_set_room_privacy(self, session, payload=None):
        data = _payload_dict(payload)
        room_id = _required_id(data, 'roomId')
        membership = self.rooms.update_member(room_id, session.user_id,
                                              is_private=_required_flag(data, 'isPrivate'))
        result = {'roomId': room_id, 'userId': session.user_id, 'isPrivate': membership.is_private}
        emit(Event.ROOM_PRIVACY_SET.value, result)
        return result

    # ---------------------------------------------------------------- users and friends

    def on_update_user(self, session, payload=None):
        user = self.directory.update(session.user_id, _payload_dict(payload)).to_dict()
        # Every session of the user sees the new profile
        self.socketio.emit(Event.USER_UPDATED.value, user, to=user_channel(session.user_id))
        return user

    def on_delete_user(self, session, payload=None):
        user_id = session.user_id
        self.directory.delete(user_id)
        result = {'userId': user_id}
        self.socketio.emit(Event.USER_DELETED.value, result, to=user_channel(user_id))
        return result

    def on_get_friends(self, session, payload=None):
        friends = [entry.to_dict() for entry in self.friends.list_friends(session.user_id)]
        emit(Event.GET_FRIENDS.value, friends)
        return friends

    def on_add_friend(self, session, payload=None):
        data = _payload_dict(payload)
        entry = self.friends.add(session.user_id, _required_id(data, 'friendId'),
                                 alias=data.get('alias'), is_private=data.get('isPrivate', False))
        result = entry.to_dict()
        emit(Event.FRIEND_ADDED.value, result)
        return result

    def on_remove_friend(self, session, payload=None):
        friend_id = _required_id(_payload_dict(payload), 'friendId')
        self.friends.remove(session.user_id, friend_id)
        result = {'userId': session.user_id, 'friendId': friend_id}
        emit(Event.FRIEND_REMOVED.value, result)
        return result

    def on_update_friend_alias(self, session, payload=None):
        data = _payload_dict(payload)
        friend_id = _required_id(data, 'friendId')
        entry = self.friends.update(session.user_id, friend_id, alias=_required_alias(data))
        result = {'userId': session.user_id, 'friendId': friend_id, 'alias': entry.alias}
        emit(Event.FRIEND_ALIAS_UPDATED.value, result)
        return result

    def on_set_friend_privacy(self, session, payload=None):
        data = _payload_dict(payload)
        friend_id = _required_id(data, 'friendId')
        entry = self.friends.update(session.user_id, friend_id, is_private=_required_flag(data, 'isPrivate'))
        result = {'userId': session.user_id, 'friendId': friend_id, 'isPrivate': entry.is_private}
        emit(Event.FRIEND_PRIVACY_SET.value, result)
        return result

    # ---------------------------------------------------------------- helpers

    def forget_room(self, room_id, user_id=None):
        """Drop ``room_id`` as the room context of every matching session"""
        with self._sessions_lock:
            for session in self.sessions.values():
                if session.room_id == room_id and (user_id is None or session.user_id == user_id):
                    session.room_id = None

    def _membership_args(self, session, payload):
        data = _payload_dict(payload)
        room_id = _required_id(data, 'roomId')
        user_id = optional_id(data.get('userId'), 'userId') or session.user_id
        return room_id, user_id

    def _require_membership(self, room_id, user_id):
        room = self.rooms.get(room_id)
        if user_id not in room.member_ids:
            raise ValidationError(f"user {user_id} is not a member of room {room_id}")
        return room
