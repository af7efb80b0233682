"""
extensions.py — Flask extension singletons.

Initialises SQLAlchemy and the mailer as module-level objects so they can be
imported anywhere without creating circular dependencies.

Pattern:
    1. Create the extension object here (no app attached yet).
    2. Call init_app(app) inside the app factory in app/__init__.py.
    3. Import `db` or `mailer` from here wherever needed.

    from shelfwise.app.extensions import db, mailer

Schemas (app/schemas/) inherit from marshmallow.Schema directly, so unit
tests can load them without an application context.
"""

from __future__ import annotations

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.engine import Engine

from shelfwise.app.mailer import Mailer

db = SQLAlchemy()

mailer = Mailer()


def configure_sqlite_engine(engine: Engine) -> None:
    """
    Tunes a SQLite engine for the ledger's write patterns.

    - PRAGMA foreign_keys=ON so ON DELETE CASCADE / SET NULL behave as on
      PostgreSQL.
    - pysqlite's implicit BEGIN is disabled and every transaction opens with
      BEGIN IMMEDIATE. Writers then serialise on the database lock instead of
      failing with "database is locked" on lock upgrade, and SAVEPOINTs work.

    No-op for any other dialect.
    """
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")
