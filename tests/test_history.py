import types

import pytest

from directory import UserDirectory
from rooms import RoomRegistry
from history import HistoryStore, conversation_key
from models import Message
from errors import ValidationError


@pytest.fixture
def store(ctx):
    return HistoryStore()


@pytest.fixture
def people(ctx):
    directory = UserDirectory()
    ann = directory.create('ann', 'ann@example.com').id
    ben = directory.create('ben', 'ben@example.com').id
    room = RoomRegistry().create_room('general', member_ids=[ann, ben]).id
    return ann, ben, room


def room_msg(talker, room, text):
    return Message(talker_id=talker, room_id=room, text={'message': text, 'image': ''})


def direct_msg(talker, listener, text):
    return Message(talker_id=talker, listener_id=listener, text={'message': text, 'image': ''})


def test_append_assigns_id_and_timestamp(store, people):
    ann, _, room = people

    stored = store.append(room_msg(ann, room, 'hi'))

    assert stored.id is not None
    assert stored.msg_id
    assert stored.timestamp > 0
    assert stored.mention_id_list == []


def test_append_keeps_client_msg_id(store, people):
    ann, _, room = people
    message = room_msg(ann, room, 'hi')
    message.msg_id = 'client-1'

    assert store.append(message).msg_id == 'client-1'


def test_duplicate_msg_id_is_rejected(store, people):
    ann, _, room = people
    first = room_msg(ann, room, 'one')
    first.msg_id = 'dup'
    store.append(first)

    second = room_msg(ann, room, 'two')
    second.msg_id = 'dup'
    with pytest.raises(ValidationError):
        store.append(second)
    assert [m.text['message'] for m in store.get_history(room)] == ['one']


def test_append_requires_exactly_one_destination(store, people):
    ann, ben, room = people
    both = Message(talker_id=ann, room_id=room, listener_id=ben, text={'message': 'x', 'image': ''})
    neither = Message(talker_id=ann, text={'message': 'x', 'image': ''})

    for message in (both, neither):
        with pytest.raises(ValidationError):
            store.append(message)


def test_history_is_in_append_order_and_restartable(store, people):
    ann, ben, room = people
    for i in range(5):
        store.append(room_msg(ann if i % 2 else ben, room, f"m{i}"))

    history = store.get_history(room)

    assert isinstance(history, types.GeneratorType)
    first = [m.text['message'] for m in history]
    second = [m.text['message'] for m in store.get_history(room)]
    assert first == ['m0', 'm1', 'm2', 'm3', 'm4']
    assert second == first


def test_history_limit_keeps_most_recent(store, people):
    ann, _, room = people
    ids = [store.append(room_msg(ann, room, f"m{i}")).id for i in range(5)]

    assert [m.id for m in store.get_history(room, limit=2)] == ids[-2:]
    assert [m.id for m in store.get_history(room, limit=2, before=ids[3])] == ids[1:3]
    assert list(store.get_history(room, limit=0)) == []


def test_history_is_per_room(store, people):
    ann, ben, room = people
    other = RoomRegistry().create_room('other', member_ids=[ann]).id
    store.append(room_msg(ann, room, 'here'))
    store.append(room_msg(ann, other, 'there'))

    assert [m.text['message'] for m in store.get_history(other)] == ['there']


def test_conversation_contains_both_directions(store, people):
    ann, ben, room = people
    store.append(direct_msg(ann, ben, 'ping'))
    store.append(direct_msg(ben, ann, 'pong'))
    store.append(room_msg(ann, room, 'room noise'))

    assert [m.text['message'] for m in store.get_conversation(ben, ann)] == ['ping', 'pong']


def test_chats_for_user_cover_rooms_and_direct_messages(store, people):
    ann, ben, room = people
    outsider = UserDirectory().create('cat', 'cat@example.com').id
    store.append(room_msg(ben, room, 'room'))
    store.append(direct_msg(outsider, ann, 'dm'))
    store.append(direct_msg(outsider, ben, 'not for ann'))

    assert [m.text['message'] for m in store.get_chats_for_user(ann)] == ['room', 'dm']
    assert [m.text['message'] for m in store.get_chats_for_user(ann, limit=1)] == ['dm']


def test_messages_survive_sender_deletion(store, people):
    ann, _, room = people
    store.append(room_msg(ann, room, 'still here'))

    UserDirectory().delete(ann)

    (message,) = list(store.get_history(room))
    assert message.talker_id == ann


def test_conversation_key_is_symmetric_for_direct_messages():
    assert conversation_key(direct_msg(1, 2, 'a')) == conversation_key(direct_msg(2, 1, 'b'))
    assert conversation_key(room_msg(1, 7, 'a')) == ('room', 7)


def test_locked_is_reentrant(store):
    with store.locked(('room', 1)):
        with store.locked(('room', 1)):
            pass


def test_conversation_locks_are_released_after_use(store):
    key = ('room', 7)

    with store.locked(key):
        assert key in store._locks

    assert key not in store._locks
