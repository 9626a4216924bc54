from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timezone
from enum import IntEnum

db = SQLAlchemy()

TIME_FORMAT = '%Y-%m-%d %H:%M:%S'

# Largest id a 64-bit INTEGER column can hold
MAX_ID = 2 ** 63 - 1


def _utcnow():
    return datetime.now(timezone.utc)


class MessageKind(IntEnum):
    TEXT = 1
    IMAGE = 3
    SYSTEM = 10000


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    receive_device = db.Column(db.Boolean, nullable=False, default=False)
    email_note = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        """Convert user to dictionary for JSON serialization"""
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'receiveDevice': self.receive_device,
            'emailNote': self.email_note,
            'createdAt': self.created_at.strftime(TIME_FORMAT) if self.created_at else None,
            'updatedAt': self.updated_at.strftime(TIME_FORMAT) if self.updated_at else None,
        }


class Room(db.Model):
    __tablename__ = 'rooms'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    owner_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=_utcnow)

    memberships = db.relationship('RoomMember', backref='room', lazy='selectin',
                                  cascade='all, delete-orphan')

    @property
    def member_ids(self):
        return {m.user_id for m in self.memberships}

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'ownerId': self.owner_id,
            'members': sorted(self.member_ids),
            'createdAt': self.created_at.strftime(TIME_FORMAT) if self.created_at else None,
        }


class RoomMember(db.Model):
    __tablename__ = 'room_members'
    __table_args__ = (db.UniqueConstraint('room_id', 'user_id', name='uq_room_member'),)

    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('rooms.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    alias = db.Column(db.String(255), nullable=False, default='')
    is_private = db.Column(db.Boolean, nullable=False, default=False)
    joined_at = db.Column(db.DateTime, default=_utcnow)

    def to_dict(self):
        return {
            'roomId': self.room_id,
            'userId': self.user_id,
            'alias': self.alias or '',
            'isPrivate': bool(self.is_private),
            'joinedAt': self.joined_at.strftime(TIME_FORMAT) if self.joined_at else None,
        }


class Friend(db.Model):
    """One direction of a friendship: ``user_id`` keeps ``friend_id`` in their list"""
    __tablename__ = 'user_friends'
    __table_args__ = (db.UniqueConstraint('user_id', 'friend_id', name='uq_user_friend'),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    friend_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    alias = db.Column(db.String(255), nullable=False, default='')
    is_private = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=_utcnow)

    friend = db.relationship('User', foreign_keys=[friend_id], lazy='joined')

    def to_dict(self):
        return {
            'userId': self.user_id,
            'friendId': self.friend_id,
            'alias': self.alias or '',
            'isPrivate': bool(self.is_private),
            'friend': self.friend.to_dict() if self.friend else None,
            'createdAt': self.created_at.strftime(TIME_FORMAT) if self.created_at else None,
        }


class Message(db.Model):
    """A stored chat message. Rows are only ever inserted.

    Sender and recipient are plain integers rather than foreign keys so that
    deleting a user leaves their history readable.
    """
    __tablename__ = 'messages'

    id = db.Column(db.Integer, primary_key=True)
    msg_id = db.Column(db.String(64), unique=True, nullable=False)
    talker_id = db.Column(db.Integer, nullable=False, index=True)
    listener_id = db.Column(db.Integer, nullable=True, index=True)
    room_id = db.Column(db.Integer, nullable=True, index=True)
    text = db.Column(db.JSON, nullable=False)
    timestamp = db.Column(db.BigInteger, nullable=False)
    type = db.Column(db.Integer, nullable=False, default=int(MessageKind.TEXT))
    mention_id_list = db.Column(db.JSON, nullable=False, default=list)

    def to_dict(self):
        """Convert message to the wire shape used by the socket protocol"""
        return {
            'id': self.id,
            'msgId': self.msg_id,
            'talkerId': self.talker_id,
            'listenerId': self.listener_id,
            'roomId': self.room_id,
            'text': dict(self.text or {}),
            'timestamp': self.timestamp,
            'type': self.type,
            'mentionIdList': list(self.mention_id_list or []),
        }
