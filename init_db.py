#!/usr/bin/env python
"""
Script to initialize the database for the chat server and seed default rooms
"""
import sys
import logging
from sqlalchemy import create_engine
from sqlalchemy_utils import database_exists, create_database
from flask import Flask
from config import load_config
from models import db, Room

logger = logging.getLogger(__name__)


def seed_rooms(names):
    """Create every named room that does not exist yet. Returns the new rooms."""
    existing = {room.name for room in Room.query.all()}
    created = [Room(name=name) for name in names if name not in existing]
    if created:
        db.session.add_all(created)
        db.session.commit()
    return created


def init_db():
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    config = load_config()
    database_url = config['SQLALCHEMY_DATABASE_URI']

    # Create a minimal Flask app just for database initialization
    app = Flask(__name__)
    app.config['SQLALCHEMY_DATABASE_URI'] = database_url
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    db.init_app(app)

    with app.app_context():
        # Check if database exists, if not create it
        engine = create_engine(database_url)
        if not database_exists(engine.url):
            create_database(engine.url)
            logger.info(f"Created database {engine.url.render_as_string(hide_password=True)}")

        db.create_all()
        logger.info("Database tables created successfully!")

        created = seed_rooms(config['DEFAULT_ROOMS'])
        for room in created:
            logger.info(f"Added room {room.id}: {room.name}")

        logger.info("Database initialization complete.")


if __name__ == "__main__":
    try:
        init_db()
    except Exception as e:
        logger.error(f"Error initializing database: {e}")
        sys.exit(1)
