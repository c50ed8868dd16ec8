# db_queries/openwebauth_tokens.py
# Contains functions for the short-lived OpenWebAuth token store.

import sqlite3
import secrets
import time
from db import get_db


def create_token(token_type, uid, meta):
    """
    Issues a new unguessable token for (token_type, uid) and stores meta with it.
    Returns the token string, or None if it could not be stored.
    """
    token = secrets.token_hex(32)
    db = get_db()
    try:
        db.execute("""
            INSERT INTO openwebauth_tokens (type, uid, token, meta, created)
            VALUES (?, ?, ?, ?, ?)
        """, (token_type, uid, token, meta, time.time()))
        db.commit()
        return token
    except sqlite3.Error as e:
        db.rollback()
        print(f"ERROR: Could not store {token_type} token for uid {uid}: {e}")
        return None

def get_meta(token_type, uid, token, consume=False):
    """
    Returns the meta stored with a token, or None if the token is unknown.

    With consume=True the token row is deleted after it is read. The lookup
    and the delete are separate statements; only the caller whose DELETE
    removed the row (rowcount == 1) gets the meta back, so two requests
    replaying the same token cannot both succeed.
    """
    if not token:
        return None

    db = get_db()
    cursor = db.cursor()
    try:
        cursor.execute("""
            SELECT id, meta FROM openwebauth_tokens
            WHERE type = ? AND uid = ? AND token = ?
            LIMIT 1
        """, (token_type, uid, token))
        row = cursor.fetchone()
        if not row:
            return None

        if consume:
            cursor.execute("DELETE FROM openwebauth_tokens WHERE id = ?", (row['id'],))
            db.commit()
            if cursor.rowcount != 1:
                return None

        return row['meta']
    except sqlite3.Error as e:
        db.rollback()
        print(f"ERROR: Token lookup failed for type {token_type}: {e}")
        return None

def purge(token_type, max_age_seconds):
    """Deletes all tokens of token_type older than max_age_seconds."""
    db = get_db()
    try:
        db.execute("DELETE FROM openwebauth_tokens WHERE type = ? AND created < ?",
                   (token_type, time.time() - max_age_seconds))
        db.commit()
    except sqlite3.Error as e:
        db.rollback()
        print(f"ERROR: Could not purge {token_type} tokens: {e}")
