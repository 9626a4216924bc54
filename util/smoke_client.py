#!/usr/bin/env python
"""
Smoke client: exercises the HTTP API and the Socket.IO events of a running
server and prints whatever comes back
"""
import json
import sys
import time
import argparse
import requests
import socketio
from socketio.exceptions import ConnectionError as SocketConnectionError

SOCKET_EVENTS = ['self', 'receive', 'email', 'message', 'getChats', 'getRooms', 'getUsers']


def check_http(base_url):
    """Run the user directory scenario. Returns the ids of two users and a room."""
    api = f"{base_url}/api"

    response = requests.get(f"{api}/ping", timeout=10)
    print(f"Ping response: {response.status_code} {response.json()}")

    response = requests.get(f"{api}/users", timeout=10)
    print(f"User list: {len(response.json())} users")

    response = requests.post(f"{api}/users", json={'name': '测试用户', 'email': 'test@example.com'}, timeout=10)
    print(f"Create user: {response.status_code} {response.json()}")
    response.raise_for_status()
    user_id = response.json()['id']

    response = requests.get(f"{api}/users/{user_id}", timeout=10)
    print(f"Get user: {response.status_code} {response.json()}")

    response = requests.put(f"{api}/users/{user_id}", json={'name': '更新的用户名'}, timeout=10)
    print(f"Update user: {response.status_code} {response.json()}")

    response = requests.post(f"{api}/users", json={'name': 'Listener', 'email': 'listener@example.com'}, timeout=10)
    response.raise_for_status()
    listener_id = response.json()['id']

    response = requests.post(f"{api}/rooms", json={'name': 'smoke', 'ownerId': user_id, 'members': [listener_id]},
                             timeout=10)
    print(f"Create room: {response.status_code} {response.json()}")
    response.raise_for_status()
    room_id = response.json()['id']

    return user_id, listener_id, room_id


def check_socket(base_url, user_id, room_id, wait):
    sio = socketio.Client(ssl_verify=False)  # Skip SSL verification for self-signed certs

    @sio.event
    def connect():
        print(f"Connected to server! Session ID: {sio.sid}")

    @sio.event
    def connect_error(data):
        print(f"Connection error: {data}")

    @sio.event
    def disconnect():
        print("Disconnected from server")

    @sio.on('error')
    def on_error(data):
        print(f"Server error: {data}")

    def printer(name):
        def handler(data):
            print(f"Received {name}: {json.dumps(data, ensure_ascii=False)[:300]}")
        return handler

    for name in SOCKET_EVENTS:
        sio.on(name, printer(name))

    sio.connect(base_url, auth={'userId': user_id}, transports=['polling'], wait_timeout=10)

    sio.emit('self')
    sio.emit('receive')
    sio.emit('email')
    test_message = {
        'message': {
            'msgId': '',
            'talkerId': user_id,
            'listenerId': 0,
            'roomId': room_id,
            'text': {'message': '测试消息', 'image': ''},
            'timestamp': int(time.time() * 1000),
            'type': 1,
            'mentionIdList': '',
        }
    }
    sio.emit('message', json.dumps(test_message, ensure_ascii=False))
    sio.emit('getChats', {'roomId': room_id})
    sio.emit('getRooms')
    sio.emit('getUsers')

    sio.sleep(wait)
    sio.disconnect()


def cleanup(base_url, user_ids):
    for user_id in user_ids:
        response = requests.delete(f"{base_url}/api/users/{user_id}", timeout=10)
        print(f"Delete user {user_id}: {response.status_code} {response.json()}")
        response = requests.get(f"{base_url}/api/users/{user_id}", timeout=10)
        print(f"Get deleted user {user_id}: {response.status_code} (expected 404)")


def main():
    parser = argparse.ArgumentParser(description='Smoke test a running chat server')
    parser.add_argument('--url', default='http://localhost:8080', help='Server URL (default: http://localhost:8080)')
    parser.add_argument('--wait', type=float, default=3.0, help='Seconds to wait for socket events')
    args = parser.parse_args()

    print(f"Testing HTTP API at {args.url}...")
    try:
        user_id, listener_id, room_id = check_http(args.url)
        print(f"Testing Socket.IO at {args.url}/socket.io ...")
        check_socket(args.url, user_id, room_id, args.wait)
        cleanup(args.url, [user_id, listener_id])
    except (requests.RequestException, SocketConnectionError) as e:
        print(f"Error: {e}")
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
