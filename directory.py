"""
User directory: CRUD over the users table
"""
import re
import logging
from models import db, User, RoomMember, Friend, MAX_ID
from errors import ValidationError, NotFound

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
MAX_FIELD_LENGTH = 255
UPDATABLE_FIELDS = ('name', 'email')
PREFERENCE_FIELDS = ('receive_device', 'email_note')


def _clean_name(name):
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("name is required")
    name = name.strip()
    if len(name) > MAX_FIELD_LENGTH:
        raise ValidationError(f"name must be at most {MAX_FIELD_LENGTH} characters")
    return name


def _clean_email(email):
    if not isinstance(email, str) or not email.strip():
        raise ValidationError("email is required")
    email = email.strip()
    if len(email) > MAX_FIELD_LENGTH or not EMAIL_RE.match(email):
        raise ValidationError(f"email is malformed: {email!r}")
    return email


def _coerce_id(user_id):
    # bool is an int subclass but never a valid id
    if isinstance(user_id, bool):
        raise NotFound(f"User {user_id!r} not found")
    try:
        value = int(user_id)
    except (TypeError, ValueError):
        raise NotFound(f"User {user_id!r} not found")
    if not 0 < value <= MAX_ID:
        raise NotFound(f"User {user_id!r} not found")
    return value


class UserDirectory:

    def list(self):
        return User.query.order_by(User.id).all()

    def get(self, user_id):
        user = db.session.get(User, _coerce_id(user_id))
        if user is None:
            raise NotFound(f"User {user_id} not found")
        return user

    def exists(self, user_id):
        try:
            self.get(user_id)
        except NotFound:
            return False
        return True

    def create(self, name, email):
        user = User(name=_clean_name(name), email=_clean_email(email))
        db.session.add(user)
        db.session.commit()
        logger.info(f"Created user {user.id} ({user.name})")
        return user

    def update(self, user_id, fields):
        user = self.get(user_id)
        if not isinstance(fields, dict):
            raise ValidationError("update body must be a JSON object")
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"cannot update fields: {', '.join(sorted(unknown))}")

        if 'name' in fields:
            user.name = _clean_name(fields['name'])
        if 'email' in fields:
            user.email = _clean_email(fields['email'])
        db.session.commit()
        logger.info(f"Updated user {user.id}: {', '.join(sorted(fields)) or 'no fields'}")
        return user

    def delete(self, user_id):
        user = self.get(user_id)
        # Memberships and friend entries go with the user, messages stay
        RoomMember.query.filter_by(user_id=user.id).delete()
        Friend.query.filter((Friend.user_id == user.id) | (Friend.friend_id == user.id)).delete()
        db.session.delete(user)
        db.session.commit()
        logger.info(f"Deleted user {user_id}")

    def set_preference(self, user_id, field, value):
        """Set (or toggle, when value is None) one of the boolean preferences"""
        if field not in PREFERENCE_FIELDS:
            raise ValidationError(f"unknown preference {field!r}")
        if value is not None and not isinstance(value, bool):
            raise ValidationError(f"{field} must be a boolean")

        user = self.get(user_id)
        current = bool(getattr(user, field))
        setattr(user, field, (not current) if value is None else value)
        db.session.commit()
        logger.debug(f"User {user.id} {field} = {getattr(user, field)}")
        return getattr(user, field)
