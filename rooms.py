"""
Room and membership registry
"""
import logging
from sqlalchemy.exc import IntegrityError
from models import db, Room, RoomMember, User, MAX_ID
from errors import ValidationError, NotFound

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 255


def _coerce_id(room_id):
    if isinstance(room_id, bool):
        raise NotFound(f"Room {room_id!r} not found")
    try:
        value = int(room_id)
    except (TypeError, ValueError):
        raise NotFound(f"Room {room_id!r} not found")
    if not 0 < value <= MAX_ID:
        raise NotFound(f"Room {room_id!r} not found")
    return value


def _clean_name(name):
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("room name is required")
    name = name.strip()
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"room name must be at most {MAX_NAME_LENGTH} characters")
    return name


def clean_alias(alias):
    if alias is None:
        return ''
    if not isinstance(alias, str):
        raise ValidationError("alias must be a string")
    alias = alias.strip()
    if len(alias) > MAX_NAME_LENGTH:
        raise ValidationError(f"alias must be at most {MAX_NAME_LENGTH} characters")
    return alias


class RoomRegistry:
    """Membership changes are committed in a single transaction each, so a
    concurrent reader sees either the old member set or the new one."""

    def list_rooms(self):
        return Room.query.order_by(Room.id).all()

    def get(self, room_id):
        room = db.session.get(Room, _coerce_id(room_id))
        if room is None:
            raise NotFound(f"Room {room_id} not found")
        return room

    def get_members(self, room_id):
        room = self.get(room_id)
        return set(room.member_ids)

    def is_member(self, room_id, user_id):
        return RoomMember.query.filter_by(room_id=_coerce_id(room_id), user_id=user_id).first() is not None

    def rooms_for_user(self, user_id):
        return (Room.query
                .join(RoomMember, RoomMember.room_id == Room.id)
                .filter(RoomMember.user_id == user_id)
                .order_by(Room.id)
                .all())

    def create_room(self, name, owner_id=None, member_ids=()):
        name = _clean_name(name)

        wanted = set(member_ids or ())
        if owner_id is not None:
            wanted.add(owner_id)
        self._require_users(wanted)

        room = Room(name=name, owner_id=owner_id)
        room.memberships = [RoomMember(user_id=user_id) for user_id in sorted(wanted)]
        db.session.add(room)
        db.session.commit()
        logger.info(f"Created room {room.id} ({room.name}) with {len(wanted)} members")
        return room

    def update_room(self, room_id, name, by_user=None):
        """Rename a room. With ``by_user`` set only the room owner may do it."""
        room = self.get(room_id)
        self._require_owner(room, by_user)
        room.name = _clean_name(name)
        db.session.commit()
        logger.info(f"Room {room.id} renamed to {room.name}")
        return room

    def delete_room(self, room_id, by_user=None):
        """Delete a room with its memberships. Its messages stay in history."""
        room = self.get(room_id)
        self._require_owner(room, by_user)
        deleted_id = room.id
        db.session.delete(room)
        db.session.commit()
        logger.info(f"Deleted room {deleted_id}")
        return deleted_id

    def add_member(self, room_id, user_id):
        room = self.get(room_id)
        self._require_users({user_id})
        if user_id in room.member_ids:
            return room

        room.memberships.append(RoomMember(user_id=user_id))
        try:
            db.session.commit()
        except IntegrityError:
            # Lost a race with an identical insert: the member is there either way
            db.session.rollback()
            room = self.get(room_id)
        logger.info(f"User {user_id} added to room {room.id}")
        return room

    def remove_member(self, room_id, user_id):
        room = self.get(room_id)
        membership = self._membership(room, user_id)
        room.memberships.remove(membership)
        db.session.commit()
        logger.info(f"User {user_id} removed from room {room.id}")
        return room

    def get_membership(self, room_id, user_id):
        return self._membership(self.get(room_id), user_id)

    def update_member(self, room_id, user_id, alias=None, is_private=None):
        """Change a member's own alias and/or privacy flag for one room"""
        if is_private is not None and not isinstance(is_private, bool):
            raise ValidationError("isPrivate must be a boolean")
        membership = self.get_membership(room_id, user_id)
        if alias is not None:
            membership.alias = clean_alias(alias)
        if is_private is not None:
            membership.is_private = is_private
        db.session.commit()
        logger.info(f"User {user_id} settings in room {membership.room_id}: "
                    f"alias={membership.alias!r} private={membership.is_private}")
        return membership

    def member_aliases(self, room_id, viewer_id=None):
        """Aliases of a room's members. Private members are only shown to themselves."""
        room = self.get(room_id)
        return {m.user_id: m.alias or ''
                for m in sorted(room.memberships, key=lambda m: m.user_id)
                if not m.is_private or m.user_id == viewer_id}

    def _membership(self, room, user_id):
        membership = next((m for m in room.memberships if m.user_id == user_id), None)
        if membership is None:
            raise NotFound(f"User {user_id} is not a member of room {room.id}")
        return membership

    def _require_owner(self, room, user_id):
        if user_id is not None and room.owner_id != user_id:
            raise ValidationError(f"only the owner can change room {room.id}")

    def _require_users(self, user_ids):
        if not user_ids:
            return
        for user_id in user_ids:
            if isinstance(user_id, bool) or not isinstance(user_id, int):
                raise ValidationError(f"user id must be an integer, got {user_id!r}")
        in_range = [user_id for user_id in user_ids if 0 < user_id <= MAX_ID]
        found = {row.id for row in User.query.filter(User.id.in_(in_range)).all()} if in_range else set()
        missing = sorted(set(user_ids) - found)
        if missing:
            raise NotFound(f"Users not found: {', '.join(str(i) for i in missing)}")
