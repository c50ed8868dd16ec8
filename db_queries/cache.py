# db_queries/cache.py
# Contains the node-wide key/value cache with expiry, shared by all workers.

import sqlite3
import json
import time
from db import get_db

HOUR = 3600


def cache_get(key):
    """Returns the cached value for key, or None if missing or expired."""
    db = get_db()
    cursor = db.cursor()
    try:
        cursor.execute("SELECT v FROM cache WHERE k = ? AND expires > ?", (key, time.time()))
        row = cursor.fetchone()
        return json.loads(row['v']) if row else None
    except sqlite3.Error as e:
        print(f"ERROR: Cache read failed for {key}: {e}")
        return None

def cache_set(key, value, ttl=HOUR):
    """Stores value under key for ttl seconds, replacing any previous entry."""
    db = get_db()
    try:
        db.execute("""
            INSERT INTO cache (k, v, expires) VALUES (?, ?, ?)
            ON CONFLICT(k) DO UPDATE SET v = excluded.v, expires = excluded.expires
        """, (key, json.dumps(value), time.time() + ttl))
        db.commit()
        return True
    except sqlite3.Error as e:
        db.rollback()
        print(f"ERROR: Cache write failed for {key}: {e}")
        return False

def cache_add(key, value, ttl=HOUR):
    """
    Stores value under key only if there is no live entry for it.

    This is a single conditional upsert, so concurrent callers racing on the
    same key see exactly one True. An expired entry counts as absent.
    Returns True if this call placed the entry.
    """
    now = time.time()
    db = get_db()
    cursor = db.cursor()
    try:
        cursor.execute("""
            INSERT INTO cache (k, v, expires) VALUES (?, ?, ?)
            ON CONFLICT(k) DO UPDATE SET v = excluded.v, expires = excluded.expires
            WHERE cache.expires <= ?
        """, (key, json.dumps(value), now + ttl, now))
        db.commit()
        return cursor.rowcount == 1
    except sqlite3.Error as e:
        db.rollback()
        print(f"ERROR: Cache add failed for {key}: {e}")
        return False

def cache_delete(key):
    db = get_db()
    try:
        db.execute("DELETE FROM cache WHERE k = ?", (key,))
        db.commit()
    except sqlite3.Error as e:
        db.rollback()
        print(f"ERROR: Cache delete failed for {key}: {e}")

def cache_clear_expired():
    """Removes expired entries. Returns the number of rows removed."""
    db = get_db()
    cursor = db.cursor()
    try:
        cursor.execute("DELETE FROM cache WHERE expires <= ?", (time.time(),))
        db.commit()
        return cursor.rowcount
    except sqlite3.Error as e:
        db.rollback()
        print(f"ERROR: Could not clear expired cache entries: {e}")
        return 0

def try_mark(key, ttl):
    """Loop guard: True if the caller may proceed, False if key is already marked."""
    return cache_add(key, True, ttl)
