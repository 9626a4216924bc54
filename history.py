"""
Append-only chat history.

Messages are ordered by their autoincrement id. Appends to the same
conversation (a room, or a pair of users for direct messages) are serialised
by a per-conversation lock so that insertion order and delivery order agree.
"""
import time
import uuid
import logging
import threading
import weakref
from contextlib import contextmanager
from sqlalchemy import or_, and_, select
from sqlalchemy.exc import IntegrityError
from models import db, Message, RoomMember, MessageKind
from errors import ValidationError

logger = logging.getLogger(__name__)

YIELD_BATCH = 200


def now_ms():
    return int(time.time() * 1000)


def conversation_key(message):
    if message.room_id is not None:
        return ('room', message.room_id)
    return ('direct',) + tuple(sorted((message.talker_id, message.listener_id)))


class HistoryStore:

    def __init__(self):
        # Entries vanish once no thread holds or waits on the lock
        self._locks = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    @contextmanager
    def locked(self, key):
        """Hold the append lock of one conversation. Reentrant."""
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
        with lock:
            yield

    def append(self, message):
        if (message.room_id is None) == (message.listener_id is None):
            raise ValidationError("a message needs exactly one of roomId or listenerId")
        if message.talker_id is None:
            raise ValidationError("a message needs a talkerId")

        if not message.msg_id:
            message.msg_id = uuid.uuid4().hex
        if not message.timestamp:
            message.timestamp = now_ms()
        if message.type is None:
            message.type = int(MessageKind.TEXT)
        if message.mention_id_list is None:
            message.mention_id_list = []

        with self.locked(conversation_key(message)):
            db.session.add(message)
            try:
                db.session.commit()
            except IntegrityError:
                db.session.rollback()
                raise ValidationError(f"duplicate msgId {message.msg_id!r}")

        logger.debug(f"Stored message {message.id} ({message.msg_id}) in {conversation_key(message)}")
        return message

    def get_history(self, room_id, limit=None, before=None):
        """Messages of a room in append order.

        ``limit`` keeps only the most recent messages, ``before`` is an
        exclusive message id cursor. Each call returns a fresh iterator.
        """
        query = Message.query.filter(Message.room_id == room_id)
        return self._iter_window(query, limit, before)

    def get_conversation(self, user_a, user_b, limit=None, before=None):
        query = Message.query.filter(
            Message.room_id.is_(None),
            or_(and_(Message.talker_id == user_a, Message.listener_id == user_b),
                and_(Message.talker_id == user_b, Message.listener_id == user_a)),
        )
        return self._iter_window(query, limit, before)

    def get_chats_for_user(self, user_id, limit=None):
        """Everything the user sent or received, plus messages in their rooms"""
        user_rooms = select(RoomMember.room_id).where(RoomMember.user_id == user_id)
        query = Message.query.filter(or_(
            Message.talker_id == user_id,
            Message.listener_id == user_id,
            Message.room_id.in_(user_rooms),
        ))
        return self._iter_window(query, limit, None)

    def _iter_window(self, query, limit, before):
        if before is not None:
            query = query.filter(Message.id < before)
        if limit is not None:
            if limit <= 0:
                return iter(())
            newest = query.with_entities(Message.id).order_by(Message.id.desc()).limit(limit).subquery()
            query = Message.query.filter(Message.id.in_(select(newest.c.id)))
        return self._iterate(query.order_by(Message.id.asc()))

    @staticmethod
    def _iterate(query):
        for message in query.yield_per(YIELD_BATCH):
            yield message
