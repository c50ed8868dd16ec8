# db_queries/users.py
# Contains functions for managing local accounts.

import sqlite3
from db import get_db
from utils.auth import hash_password

USER_COLUMNS = "id, nickname, password, display_name, created_at"


def get_user_by_nickname(nickname):
    """Retrieves a local account by nickname."""
    db = get_db()
    cursor = db.cursor()
    try:
        cursor.execute(f"SELECT {USER_COLUMNS} FROM users WHERE nickname = ?", (nickname,))
        row = cursor.fetchone()
        return dict(row) if row else None
    except sqlite3.OperationalError as e:
        print(f"Database error in get_user_by_nickname for '{nickname}': {e}")
        return None

def get_user_by_id(user_id):
    """Retrieves a local account by its unique ID."""
    db = get_db()
    cursor = db.cursor()
    cursor.execute(f"SELECT {USER_COLUMNS} FROM users WHERE id = ?", (user_id,))
    row = cursor.fetchone()
    return dict(row) if row else None

def add_user(nickname, password, display_name=None):
    """Adds a new local account. Returns the new ID, or None if the nickname is taken."""
    db = get_db()
    try:
        cursor = db.cursor()
        cursor.execute("""
            INSERT INTO users (nickname, password, display_name)
            VALUES (?, ?, ?)
        """, (nickname, hash_password(password), display_name or nickname))
        db.commit()
        return cursor.lastrowid
    except sqlite3.IntegrityError: # Nickname already exists
        db.rollback()
        return None
    except sqlite3.Error as e:
        db.rollback()
        print(f"ERROR: Could not add user {nickname}: {e}")
        return None
