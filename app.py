from flask import Flask, jsonify, request, g
from flask_socketio import SocketIO
from werkzeug.exceptions import HTTPException
import logging
import os
import sys
import time

from config import load_config
from models import db
from errors import ChatError, InternalError
from directory import UserDirectory
from rooms import RoomRegistry
from history import HistoryStore
from friends import FriendList
from gateway import Gateway
from api import api

logger = logging.getLogger(__name__)


def configure_logging(level='INFO', log_file='app.log'):
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def register_error_handlers(app):

    @app.errorhandler(ChatError)
    def handle_chat_error(e):
        db.session.rollback()
        logger.warning(f"{request.method} {request.path} failed: {e.kind}: {e.message}")
        return jsonify({'error': e.to_dict()}), e.status

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        kind = 'NotFound' if e.code == 404 else 'HTTPError'
        return jsonify({'error': {'kind': kind, 'message': e.description}}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        db.session.rollback()
        logger.exception(f"Unhandled error on {request.method} {request.path}")
        return jsonify({'error': InternalError("internal server error").to_dict()}), 500


def register_request_logging(app):

    @app.before_request
    def start_timer():
        g.request_started = time.perf_counter()

    @app.after_request
    def log_request(response):
        started = g.pop('request_started', None)
        latency_ms = (time.perf_counter() - started) * 1000 if started is not None else 0.0
        logger.info(f"| {response.status_code:3d} | {latency_ms:8.2f}ms | {request.remote_addr} | "
                    f"{request.method} {request.full_path.rstrip('?')}")
        return response


def create_app(overrides=None):
    config = load_config(overrides)
    configure_logging(config['LOG_LEVEL'], config['LOG_FILE'])

    app = Flask(__name__)
    app.config.from_mapping(config)
    db.init_app(app)

    # Initialize Socket.IO with proper configuration
    socketio = SocketIO(
        app,
        cors_allowed_origins=config['CORS_ALLOWED_ORIGINS'],
        ping_timeout=config['PING_TIMEOUT'],
        ping_interval=config['PING_INTERVAL'],
        async_mode=config['SOCKETIO_ASYNC_MODE'],
        logger=config['SOCKETIO_LOGGER'],
        engineio_logger=config['SOCKETIO_LOGGER']
    )

    directory = UserDirectory()
    gateway = Gateway(
        socketio,
        directory=directory,
        rooms=RoomRegistry(),
        history=HistoryStore(),
        friends=FriendList(directory),
        history_limit=config['HISTORY_LIMIT'],
    )
    app.extensions['chat_gateway'] = gateway

    app.register_blueprint(api)
    register_error_handlers(app)
    register_request_logging(app)

    logger.info("Starting application with configuration:")
    logger.info(f"SECRET_KEY set = {'Yes' if os.environ.get('SECRET_KEY') else 'No'}")
    logger.info(f"DATABASE_URL = {config['SQLALCHEMY_DATABASE_URI'].split('@')[-1]}")
    logger.info(f"ASYNC_MODE = {socketio.async_mode}")
    logger.info(f"HISTORY_LIMIT = {config['HISTORY_LIMIT']}")

    # Make sure tables exist
    with app.app_context():
        db.create_all()
        logger.info("Database tables created if they didn't exist")

    gateway.start()
    return app


if __name__ == '__main__':
    app = create_app()
    socketio = app.extensions['socketio']
    logger.info(f"Starting server on {app.config['HOST']}:{app.config['PORT']}")
    socketio.run(app, host=app.config['HOST'], port=app.config['PORT'])
