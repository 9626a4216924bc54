def test_ping(client):
    response = client.get('/api/ping')
    assert response.status_code == 200
    assert response.get_json()['message'] == 'pong'


def test_user_lifecycle_scenario(client):
    response = client.post('/api/users', json={'name': '测试用户', 'email': 'test@example.com'})
    assert response.status_code == 201
    created = response.get_json()
    assert created['id']

    response = client.get(f"/api/users/{created['id']}")
    assert response.status_code == 200
    assert response.get_json()['name'] == '测试用户'
    assert response.get_json()['email'] == 'test@example.com'

    response = client.put(f"/api/users/{created['id']}", json={'name': '更新的用户名'})
    assert response.status_code == 200
    assert response.get_json()['name'] == '更新的用户名'

    response = client.delete(f"/api/users/{created['id']}")
    assert response.status_code == 200
    assert response.get_json() == {'deleted': created['id']}

    response = client.get(f"/api/users/{created['id']}")
    assert response.status_code == 404
    assert response.get_json()['error']['kind'] == 'NotFound'


def test_list_users(client, make_user):
    make_user('Ann')
    make_user('Ben')

    response = client.get('/api/users')

    assert response.status_code == 200
    assert [u['name'] for u in response.get_json()] == ['Ann', 'Ben']


def test_create_user_validation(client):
    response = client.post('/api/users', json={'name': 'NoEmail'})
    assert response.status_code == 400
    assert response.get_json()['error']['kind'] == 'ValidationError'

    response = client.post('/api/users', data='not json', content_type='text/plain')
    assert response.status_code == 400

    assert client.get('/api/users').get_json() == []


def test_missing_user_operations(client):
    assert client.get('/api/users/123').status_code == 404
    assert client.put('/api/users/123', json={'name': 'x'}).status_code == 404
    assert client.delete('/api/users/123').status_code == 404
    assert client.get('/api/users/abc').status_code == 404


def test_unknown_route_is_json_404(client):
    response = client.get('/api/nothing-here')
    assert response.status_code == 404
    assert response.get_json()['error']['kind'] == 'NotFound'


def test_rooms_and_members(client, make_user):
    ann = make_user('Ann')
    ben = make_user('Ben')

    response = client.post('/api/rooms', json={'name': 'general', 'ownerId': ann})
    assert response.status_code == 201
    room = response.get_json()
    assert room['members'] == [ann]

    response = client.put(f"/api/rooms/{room['id']}/members/{ben}")
    assert response.get_json()['members'] == sorted([ann, ben])
    assert client.get(f"/api/rooms/{room['id']}/members").get_json() == sorted([ann, ben])

    response = client.delete(f"/api/rooms/{room['id']}/members/{ann}")
    assert response.get_json()['members'] == [ben]

    assert [r['name'] for r in client.get('/api/rooms').get_json()] == ['general']
    assert client.get('/api/rooms/999').status_code == 404


def test_post_message_and_read_room_history(client, make_user, make_room):
    ann = make_user('Ann')
    room = make_room('general', [ann])

    for text in ('one', 'two', 'three'):
        response = client.post('/api/message', json={'message': {
            'talkerId': ann, 'roomId': room, 'text': {'message': text, 'image': ''}}})
        assert response.status_code == 201

    history = client.get(f"/api/rooms/{room}/messages").get_json()
    assert [m['text']['message'] for m in history] == ['one', 'two', 'three']

    latest = client.get(f"/api/rooms/{room}/messages?limit=1").get_json()
    assert [m['text']['message'] for m in latest] == ['three']

    assert client.get(f"/api/rooms/{room}/messages?limit=abc").status_code == 400


def test_post_message_from_non_member(client, make_user, make_room):
    ann = make_user('Ann')
    ben = make_user('Ben')
    room = make_room('general', [ann])

    response = client.post('/api/message', json={'message': {
        'talkerId': ben, 'roomId': room, 'text': {'message': 'let me in', 'image': ''}}})

    assert response.status_code == 400
    assert client.get(f"/api/rooms/{room}/messages").get_json() == []


def test_post_message_from_unknown_talker(client, make_user):
    ann = make_user('Ann')
    response = client.post('/api/message', json={'message': {
        'talkerId': 999, 'listenerId': ann, 'text': {'message': 'hi', 'image': ''}}})
    assert response.status_code == 404


def test_out_of_range_ids_are_404(client, make_room, make_user):
    room = make_room('general', [make_user('Ann')])

    assert client.get('/api/users/99999999999999999999').status_code == 404
    assert client.get('/api/users/-1').status_code == 404
    assert client.get('/api/rooms/99999999999999999999').status_code == 404
    assert client.put(f"/api/rooms/{room}/members/{2 ** 64}").status_code == 404
    assert client.get(f"/api/rooms/{room}/messages?before={2 ** 64}").status_code == 400


def test_update_missing_user_is_404_even_with_unknown_fields(client):
    response = client.put('/api/users/123', json={'nickname': 'x'})
    assert response.status_code == 404
    assert response.get_json()['error']['kind'] == 'NotFound'


def test_update_and_delete_room(client, app, make_user):
    ann = make_user('Ann')
    ben = make_user('Ben')
    room = client.post('/api/rooms', json={'name': 'general', 'ownerId': ann, 'members': [ben]}).get_json()

    response = client.put(f"/api/rooms/{room['id']}", json={'name': 'lobby', 'userId': ben})
    assert response.status_code == 400

    response = client.put(f"/api/rooms/{room['id']}", json={'name': 'lobby'})
    assert response.status_code == 200
    assert response.get_json()['name'] == 'lobby'

    client.post('/api/message', json={'message': {
        'talkerId': ann, 'roomId': room['id'], 'text': {'message': 'kept', 'image': ''}}})

    response = client.delete(f"/api/rooms/{room['id']}?userId={ann}")
    assert response.get_json() == {'deleted': room['id']}
    assert client.get(f"/api/rooms/{room['id']}").status_code == 404
    assert client.delete(f"/api/rooms/{room['id']}").status_code == 404

    with app.app_context():
        kept = list(app.extensions['chat_gateway'].history.get_history(room['id']))
        assert [m.text['message'] for m in kept] == ['kept']


def test_member_alias_and_privacy(client, make_user, make_room):
    ann = make_user('Ann')
    ben = make_user('Ben')
    room = make_room('general', [ann, ben])

    response = client.patch(f"/api/rooms/{room}/members/{ann}", json={'alias': 'A'})
    assert response.get_json()['alias'] == 'A'
    response = client.patch(f"/api/rooms/{room}/members/{ben}", json={'alias': 'B', 'isPrivate': True})
    assert response.get_json()['isPrivate'] is True

    assert client.get(f"/api/rooms/{room}/aliases").get_json() == {str(ann): 'A'}
    assert client.get(f"/api/rooms/{room}/aliases?viewerId={ben}").get_json() == {str(ann): 'A', str(ben): 'B'}

    assert client.patch(f"/api/rooms/{room}/members/{ann}", json={'isPrivate': 'no'}).status_code == 400
    assert client.patch(f"/api/rooms/{room}/members/999", json={'alias': 'x'}).status_code == 404


def test_friend_routes(client, make_user):
    ann = make_user('Ann')
    ben = make_user('Ben')

    response = client.post(f"/api/users/{ann}/friends", json={'friendId': ben, 'alias': 'Benny'})
    assert response.status_code == 201
    assert response.get_json()['friend']['name'] == 'Ben'

    response = client.patch(f"/api/users/{ann}/friends/{ben}", json={'isPrivate': True})
    assert response.get_json()['isPrivate'] is True

    listed = client.get(f"/api/users/{ann}/friends").get_json()
    assert [(f['friendId'], f['alias']) for f in listed] == [(ben, 'Benny')]
    assert client.get(f"/api/users/{ben}/friends").get_json() == []

    assert client.delete(f"/api/users/{ann}/friends/{ben}").get_json() == {'deleted': ben}
    assert client.delete(f"/api/users/{ann}/friends/{ben}").status_code == 404


def test_friend_route_validation(client, make_user):
    ann = make_user('Ann')

    assert client.post(f"/api/users/{ann}/friends", json={}).status_code == 400
    assert client.post(f"/api/users/{ann}/friends", json={'friendId': ann}).status_code == 400
    assert client.post(f"/api/users/{ann}/friends", json={'friendId': 999}).status_code == 404
    assert client.get('/api/users/999/friends').status_code == 404
