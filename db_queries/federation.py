# db_queries/federation.py
# Contains functions for connections to other nodes.

import sqlite3
from db import get_db


def get_node_by_hostname(hostname):
    """Retrieves a single node's details by its hostname."""
    if not hostname:
        return None
    db = get_db()
    cursor = db.cursor()
    try:
        cursor.execute("SELECT * FROM connected_nodes WHERE hostname = ?", (hostname.lower(),))
        row = cursor.fetchone()
        return dict(row) if row else None
    except sqlite3.Error as e:
        print(f"ERROR: Could not load node {hostname}: {e}")
        return None

def upsert_node_connection(hostname, shared_secret, nickname=None, status='connected'):
    """Creates or updates a node connection with its shared secret."""
    db = get_db()
    try:
        db.execute("""
            INSERT INTO connected_nodes (hostname, nickname, status, shared_secret)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(hostname) DO UPDATE SET
                nickname = COALESCE(excluded.nickname, connected_nodes.nickname),
                status = excluded.status,
                shared_secret = excluded.shared_secret
        """, (hostname.lower(), nickname, status, shared_secret))
        db.commit()
        return True
    except sqlite3.Error as e:
        db.rollback()
        print(f"ERROR: Could not save connection to {hostname}: {e}")
        return False
