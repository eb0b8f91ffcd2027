"""
extensions.py — Flask extension singletons.

Initialises SQLAlchemy and marshmallow as module-level objects so they can be
imported anywhere without creating circular dependencies.

Pattern:
    1. Create the extension object here (no app attached yet).
    2. Call init_app(app) inside the app factory in app/__init__.py.
    3. Import `db` or `ma` from here wherever needed.

    from sharetab.app.extensions import db, ma

Do not pass the app object directly to SQLAlchemy() or Marshmallow() at
import time — that would prevent running tests with a separate test app
instance.
"""

from __future__ import annotations

from flask_marshmallow import Marshmallow
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.engine import Engine

db = SQLAlchemy()

# Marshmallow instance.
#
# Schema inheritance rule:
#   All validation Schema classes (in app/schemas/) inherit from
#   marshmallow.Schema directly, NOT from ma.Schema. ma.Schema needs an
#   active application context and the unit tests run without one.
ma = Marshmallow()


def configure_sqlite(engine: Engine) -> None:
    """
    Makes a pysqlite engine honour SAVEPOINT and foreign keys.

    The SQL store wraps each write in session.begin_nested(). pysqlite's own
    transaction handling emits BEGIN lazily and breaks savepoints, so the
    driver is put in autocommit mode and SQLAlchemy emits BEGIN itself.
    SQLite also ignores ON DELETE clauses unless foreign_keys is switched on
    per connection.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")
