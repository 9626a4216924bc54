"""
Socket protocol: event names and parsing of inbound ``message`` payloads.

Wire shape of a message event::

    {"message": {"msgId": "", "talkerId": 1, "listenerId": 2, "roomId": 0,
                 "text": {"message": "hi", "image": ""}, "timestamp": 0,
                 "type": 1, "mentionIdList": []}}

The payload may arrive as a JSON string or as an already decoded object.
Ids of ``0``, ``""`` or ``null`` mean "absent".
"""
import json
from enum import Enum
from typing import List, Optional

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models import Message, MessageKind, MAX_ID
from errors import ValidationError

MAX_MSG_ID_LENGTH = 64


class Event(str, Enum):
    # Request/response events, answered under the same name
    SELF = 'self'
    RECEIVE = 'receive'
    EMAIL = 'email'
    MESSAGE = 'message'
    GET_CHATS = 'getChats'
    GET_ROOMS = 'getRooms'
    GET_USERS = 'getUsers'
    GET_FRIENDS = 'getFriends'
    GET_ROOM_BY_USERS = 'getRoomByUsers'
    JOIN = 'join'

    # Requests answered under a past-tense event
    UPDATE_USER = 'updateUser'
    DELETE_USER = 'deleteUser'
    CREATE_ROOM = 'createRoom'
    UPDATE_ROOM = 'updateRoom'
    DELETE_ROOM = 'deleteRoom'
    ADD_USER_TO_ROOM = 'addUserToRoom'
    REMOVE_USER_FROM_ROOM = 'removeUserFromRoom'
    UPDATE_ROOM_ALIAS = 'updateRoomAlias'
    SET_ROOM_PRIVACY = 'setRoomPrivacy'
    ADD_FRIEND = 'addFriend'
    REMOVE_FRIEND = 'removeFriend'
    UPDATE_FRIEND_ALIAS = 'updateFriendAlias'
    SET_FRIEND_PRIVACY = 'setFriendPrivacy'

    # Outbound only
    ERROR = 'error'
    USER_UPDATED = 'userUpdated'
    USER_DELETED = 'userDeleted'
    ROOM_CREATED = 'roomCreated'
    ROOM_UPDATED = 'roomUpdated'
    ROOM_DELETED = 'roomDeleted'
    USER_ADDED_TO_ROOM = 'userAddedToRoom'
    USER_REMOVED_FROM_ROOM = 'userRemovedFromRoom'
    ROOM_ALIAS_UPDATED = 'roomAliasUpdated'
    ROOM_PRIVACY_SET = 'roomPrivacySet'
    FRIEND_ADDED = 'friendAdded'
    FRIEND_REMOVED = 'friendRemoved'
    FRIEND_ALIAS_UPDATED = 'friendAliasUpdated'
    FRIEND_PRIVACY_SET = 'friendPrivacySet'

    # System
    CONNECT = 'connect'
    DISCONNECT = 'disconnect'


def decode_payload(raw):
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode('utf-8', errors='replace')
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValidationError(f"could not parse payload: {e.msg}")
    return raw


def _id_or_none(value):
    # bool first: False == 0 would otherwise read as "absent"
    if isinstance(value, bool):
        raise ValueError("must be an integer id")
    if value is None or value == '':
        return None
    if isinstance(value, str):
        value = value.strip()
        if not (value.isascii() and value.isdigit()):
            raise ValueError("must be an integer id")
        value = int(value)
    if not isinstance(value, int) or not 0 <= value <= MAX_ID:
        raise ValueError("must be an integer id")
    return value or None


def optional_id(value, field):
    try:
        return _id_or_none(value)
    except ValueError:
        raise ValidationError(f"{field} must be an integer id")


class TextBody(BaseModel):
    model_config = ConfigDict(extra='ignore')

    message: str = ''
    image: str = ''

    @model_validator(mode='before')
    @classmethod
    def _plain_string(cls, data):
        if isinstance(data, str):
            return {'message': data, 'image': ''}
        return data

    @field_validator('message', 'image', mode='before')
    @classmethod
    def _null_is_empty(cls, value):
        return '' if value is None else value

    @model_validator(mode='after')
    def _not_empty(self):
        if not self.message.strip() and not self.image.strip():
            raise ValueError("message text or image is required")
        return self


class MessageIn(BaseModel):
    model_config = ConfigDict(extra='ignore', populate_by_name=True)

    msg_id: Optional[str] = Field(None, alias='msgId', max_length=MAX_MSG_ID_LENGTH)
    talker_id: Optional[int] = Field(None, alias='talkerId')
    listener_id: Optional[int] = Field(None, alias='listenerId')
    room_id: Optional[int] = Field(None, alias='roomId')
    text: TextBody
    type: MessageKind = MessageKind.TEXT
    mention_id_list: List[int] = Field(default_factory=list, alias='mentionIdList')

    @field_validator('msg_id', mode='before')
    @classmethod
    def _empty_msg_id(cls, value):
        return value or None

    @field_validator('talker_id', 'listener_id', 'room_id', mode='before')
    @classmethod
    def _ids(cls, value):
        return _id_or_none(value)

    @field_validator('type', mode='before')
    @classmethod
    def _default_type(cls, value):
        return MessageKind.TEXT if value is None or value == '' else value

    @field_validator('type')
    @classmethod
    def _no_system_messages(cls, value):
        if value is MessageKind.SYSTEM:
            raise ValueError("system messages are generated by the server")
        return value

    @field_validator('mention_id_list', mode='before')
    @classmethod
    def _mentions(cls, value):
        if value is None or value == '':
            return []
        if isinstance(value, str):
            value = [part for part in value.split(',') if part.strip()]
        if not isinstance(value, list):
            raise ValueError("must be a list of user ids")
        mentions = []
        for item in value:
            user_id = _id_or_none(item)
            if user_id is not None and user_id not in mentions:
                mentions.append(user_id)
        return mentions

    @model_validator(mode='after')
    def _one_destination(self):
        if self.room_id is None and self.listener_id is None:
            raise ValueError("roomId or listenerId is required")
        if self.room_id is not None and self.listener_id is not None:
            raise ValueError("a message goes to a room or to a user, not both")
        return self


class MessageEnvelope(BaseModel):
    message: MessageIn


def _describe(error):
    """One line per pydantic error: ``message.roomId: must be an integer id``"""
    problems = []
    for item in error.errors():
        location = '.'.join(str(part) for part in item['loc'])
        text = item['msg'].removeprefix('Value error, ')
        problems.append(f"{location}: {text}" if location else text)
    return '; '.join(problems)


def parse_message(raw, talker_id=None):
    """Build an unsaved Message from a ``message`` event payload.

    ``talker_id`` is the sender bound to the session and wins over whatever
    the payload claims. The client timestamp is discarded: the store stamps
    every message itself.
    """
    data = decode_payload(raw)
    try:
        fields = MessageEnvelope.model_validate(data).message
    except pydantic.ValidationError as e:
        raise ValidationError(f"invalid message: {_describe(e)}")

    if talker_id is None:
        talker_id = fields.talker_id
        if talker_id is None:
            raise ValidationError("talkerId is required")

    return Message(
        msg_id=fields.msg_id,
        talker_id=talker_id,
        listener_id=fields.listener_id,
        room_id=fields.room_id,
        text=fields.text.model_dump(),
        timestamp=None,
        type=int(fields.type),
        mention_id_list=fields.mention_id_list,
    )


def message_event(message):
    """Outbound ``message`` payload for a stored message"""
    return {'message': message.to_dict()}
