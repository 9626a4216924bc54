#!/usr/bin/env python
"""
Local development server runner optimized for Socket.IO
"""
import os
import eventlet

# Need to monkey patch before importing any other libraries
eventlet.monkey_patch()

from app import create_app

if __name__ == '__main__':
    app = create_app()
    socketio = app.extensions['socketio']

    # Enable SSL support
    ssl_args = {}
    cert_path = os.path.join('certs', 'cert.pem')
    key_path = os.path.join('certs', 'key.pem')

    if os.path.exists(cert_path) and os.path.exists(key_path):
        # eventlet takes certfile/keyfile instead of ssl_context
        ssl_args['certfile'] = cert_path
        ssl_args['keyfile'] = key_path
        print("SSL certificates found, running with HTTPS")
    else:
        print(f"SSL certificates not found at {cert_path} and {key_path}")
        print("Running without HTTPS")

    port = app.config['PORT']
    print(f"Starting development server on {'https' if ssl_args else 'http'}://localhost:{port}")
    print("Press Ctrl+C to stop")

    socketio.run(
        app,
        host=app.config['HOST'],
        port=port,
        debug=True,
        use_reloader=True,
        **ssl_args
    )
