# db.py
# Contains the core database connection, initialization, and closing logic.

import sqlite3
import os
import time
from flask import g, current_app


def get_db():
    """
    Establishes a database connection or returns the existing one.
    Uses Flask's 'g' object to store the connection for the current request
    (or app context, for the background worker).
    """
    if 'db' not in g:
        g.db = sqlite3.connect(current_app.config['DATABASE'], timeout=30.0, check_same_thread=False)
        g.db.row_factory = sqlite3.Row # Return rows as dictionary-like objects

        cursor = g.db.cursor()
        # Set busy timeout to 30 seconds (handles write lock contention between workers)
        cursor.execute("PRAGMA busy_timeout=30000")
        cursor.execute("PRAGMA synchronous=NORMAL")  # Safe with WAL mode
        cursor.execute("PRAGMA temp_store=MEMORY")
        cursor.close()

    return g.db

def close_db(e=None):
    """
    Closes the database connection at the end of the request.
    """
    db = g.pop('db', None)
    if db is not None:
        db.close()

def _run_initialization(app):
    """Creates the schema on a direct connection."""
    init_conn = sqlite3.connect(app.config['DATABASE'], timeout=30.0)
    init_conn.row_factory = sqlite3.Row
    try:
        cursor = init_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        if cursor.fetchone()[0] == 'wal':
            print("WAL mode enabled successfully")
        cursor.close()

        with app.open_resource('schema.sql', mode='r') as f:
            init_conn.cursor().executescript(f.read())
        init_conn.commit()
    finally:
        init_conn.close()

def init_db(app):
    """
    Initializes the database schema.

    Uses file-based locking so that only ONE worker performs initialization
    when multiple gunicorn workers start simultaneously.
    """
    lock_file = app.config['DATABASE'] + '.init.lock'
    lock_acquired = False

    try:
        try:
            fd = os.open(lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            os.write(fd, str(os.getpid()).encode())
            os.close(fd)
            lock_acquired = True
        except FileExistsError:
            # Another worker got the lock first
            lock_acquired = False

        if lock_acquired:
            print(f"Worker {os.getpid()} performing database initialization...")
            _run_initialization(app)
            print(f"Worker {os.getpid()} completed database initialization")
        else:
            print(f"Worker {os.getpid()} waiting for database initialization...")
            max_wait = 30
            waited = 0
            while os.path.exists(lock_file) and waited < max_wait:
                time.sleep(0.5)
                waited += 0.5

            if waited >= max_wait:
                print(f"Worker {os.getpid()} timed out waiting for initialization")

    finally:
        if lock_acquired and os.path.exists(lock_file):
            try:
                os.remove(lock_file)
            except OSError as e:
                print(f"ERROR: Could not remove init lock file {lock_file}: {e}")

def init_app(app):
    """
    Register database functions with the Flask app. This is called by
    the application factory.
    """
    app.teardown_appcontext(close_db)
    init_db(app)
