"""
Friend lists.

A friendship is one-directional: adding Ben to Ann's list does not put Ann on
Ben's. Each entry carries the owner's private alias for the friend and a
privacy flag.
"""
import logging
from sqlalchemy.exc import IntegrityError
from models import db, Friend
from errors import ValidationError, NotFound
from rooms import clean_alias

logger = logging.getLogger(__name__)


class FriendList:

    def __init__(self, directory):
        self.directory = directory

    def list_friends(self, user_id):
        user = self.directory.get(user_id)
        return Friend.query.filter_by(user_id=user.id).order_by(Friend.friend_id).all()

    def get(self, user_id, friend_id):
        user = self.directory.get(user_id)
        friend = self.directory.get(friend_id)
        entry = Friend.query.filter_by(user_id=user.id, friend_id=friend.id).first()
        if entry is None:
            raise NotFound(f"User {friend.id} is not a friend of user {user.id}")
        return entry

    def add(self, user_id, friend_id, alias='', is_private=False):
        user = self.directory.get(user_id)
        friend = self.directory.get(friend_id)
        if user.id == friend.id:
            raise ValidationError("cannot add yourself as a friend")
        if not isinstance(is_private, bool):
            raise ValidationError("isPrivate must be a boolean")

        existing = Friend.query.filter_by(user_id=user.id, friend_id=friend.id).first()
        if existing is not None:
            return existing

        entry = Friend(user_id=user.id, friend_id=friend.id, alias=clean_alias(alias), is_private=is_private)
        db.session.add(entry)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            return self.get(user.id, friend.id)
        logger.info(f"User {user.id} added friend {friend.id}")
        return entry

    def remove(self, user_id, friend_id):
        entry = self.get(user_id, friend_id)
        db.session.delete(entry)
        db.session.commit()
        logger.info(f"User {user_id} removed friend {friend_id}")

    def update(self, user_id, friend_id, alias=None, is_private=None):
        if is_private is not None and not isinstance(is_private, bool):
            raise ValidationError("isPrivate must be a boolean")
        entry = self.get(user_id, friend_id)
        if alias is not None:
            entry.alias = clean_alias(alias)
        if is_private is not None:
            entry.is_private = is_private
        db.session.commit()
        logger.info(f"User {user_id} updated friend {friend_id}: alias={entry.alias!r} private={entry.is_private}")
        return entry
