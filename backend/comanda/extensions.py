# Overview: Flask extension instances for the database, migrations and the idempotency store.

from flask import current_app
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()

IDEMPOTENCY_EXTENSION_KEY = "comanda.idempotency"


def get_idempotency_cache():
    """Return the cache chosen at startup, or None when dedup is disabled."""
    return current_app.extensions.get(IDEMPOTENCY_EXTENSION_KEY)
