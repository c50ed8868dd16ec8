# db_queries/contacts.py
# Contains functions for contact records of remote actors and their relationships.

import sqlite3
from datetime import datetime
from db import get_db

# Relationship flags stored in contacts.rel
FOLLOWER = 1
SHARING = 2
FRIEND = 3

CONTACT_COLUMNS = "id, uid, url, nurl, addr, name, network, rel, blocked, pending, archived, created, updated"


def normalise_link(url):
    """
    Reduces a profile URL to the form used for matching: http scheme,
    no leading 'www.', no trailing slash.
    """
    if not url:
        return ''
    link = url.replace('https:', 'http:').replace('//www.', '//')
    return link.rstrip('/')

def compare_link(a, b):
    """True if both URLs point at the same profile."""
    return normalise_link(a).lower() == normalise_link(b).lower()

def _is_handle(value):
    return '@' in value and '://' not in value

def get_contact_by_id(contact_id):
    """Retrieves a single contact row by ID."""
    db = get_db()
    cursor = db.cursor()
    try:
        cursor.execute(f"SELECT {CONTACT_COLUMNS} FROM contacts WHERE id = ?", (contact_id,))
        row = cursor.fetchone()
        return dict(row) if row else None
    except sqlite3.Error as e:
        print(f"ERROR: Could not load contact {contact_id}: {e}")
        return None

def get_public_contact(url_or_handle):
    """Finds the public (uid = 0) contact for a profile URL or a nick@host handle."""
    if not url_or_handle:
        return None

    db = get_db()
    cursor = db.cursor()
    try:
        if _is_handle(url_or_handle):
            handle = url_or_handle[5:] if url_or_handle.startswith('acct:') else url_or_handle
            cursor.execute(f"SELECT {CONTACT_COLUMNS} FROM contacts WHERE addr = ? AND uid = 0 LIMIT 1",
                           (handle.lower(),))
        else:
            cursor.execute(f"SELECT {CONTACT_COLUMNS} FROM contacts WHERE nurl = ? AND uid = 0 LIMIT 1",
                           (normalise_link(url_or_handle),))
        row = cursor.fetchone()
        return dict(row) if row else None
    except sqlite3.Error as e:
        print(f"ERROR: Public contact lookup failed for {url_or_handle}: {e}")
        return None

def upsert_public_contact(data):
    """
    Creates or refreshes the public contact described by a probe result
    ({url, addr, name, network}). Returns the contact ID or None.
    """
    url = data.get('url')
    if not url:
        return None

    nurl = normalise_link(url)
    addr = (data.get('addr') or '').lower() or None
    now = datetime.now().strftime('%Y-%m-%d %H:%M:%S')

    db = get_db()
    cursor = db.cursor()
    try:
        cursor.execute("SELECT id FROM contacts WHERE nurl = ? AND uid = 0 LIMIT 1", (nurl,))
        row = cursor.fetchone()
        if row:
            cursor.execute("""
                UPDATE contacts SET url = ?, addr = COALESCE(?, addr), name = COALESCE(?, name),
                       network = COALESCE(?, network), updated = ?
                WHERE id = ?
            """, (url, addr, data.get('name'), data.get('network'), now, row['id']))
            contact_id = row['id']
        else:
            cursor.execute("""
                INSERT INTO contacts (uid, url, nurl, addr, name, network, rel, created, updated)
                VALUES (0, ?, ?, ?, ?, ?, 0, ?, ?)
            """, (url, nurl, addr, data.get('name'), data.get('network'), now, now))
            contact_id = cursor.lastrowid
        db.commit()
        return contact_id
    except sqlite3.Error as e:
        db.rollback()
        print(f"ERROR: Could not store public contact for {url}: {e}")
        return None

def get_contact_id_for_url(url_or_handle, probe=True):
    """
    Resolves a profile URL or handle to the ID of its public contact.
    If no record exists yet and probe is set, the actor is discovered via
    WebFinger and a public contact is created. Returns None if unresolvable.
    """
    contact = get_public_contact(url_or_handle)
    if contact:
        return contact['id']

    if not probe:
        return None

    # Import moved inside to avoid a circular import with utils.probe
    from utils.probe import probe_url

    data = probe_url(url_or_handle)
    if not data:
        return None
    return upsert_public_contact(data)

def get_connected_contacts(nurl, rels=(FOLLOWER, FRIEND)):
    """Returns (id, uid) for every contact row with this normalised URL and one of rels."""
    rels = tuple(rels)
    if not rels:
        return []
    placeholders = ','.join('?' for _ in rels)
    db = get_db()
    cursor = db.cursor()
    try:
        cursor.execute(f"SELECT id, uid FROM contacts WHERE nurl = ? AND rel IN ({placeholders}) ORDER BY id",
                       (nurl,) + rels)
        return [dict(row) for row in cursor.fetchall()]
    except sqlite3.Error as e:
        print(f"ERROR: Could not load connections for {nurl}: {e}")
        return []

def is_blocked_by_user(contact_id, uid):
    """
    True if the local account uid has blocked the actor behind the public
    contact contact_id, either per-account or on its own contact row.
    """
    db = get_db()
    cursor = db.cursor()
    try:
        cursor.execute("SELECT blocked FROM user_contact WHERE cid = ? AND uid = ?", (contact_id, uid))
        row = cursor.fetchone()
        if row and row['blocked']:
            return True

        cursor.execute("""
            SELECT 1 FROM contacts c
            JOIN contacts pub ON pub.nurl = c.nurl
            WHERE pub.id = ? AND c.uid = ? AND c.blocked = 1
            LIMIT 1
        """, (contact_id, uid))
        return cursor.fetchone() is not None
    except sqlite3.Error as e:
        print(f"ERROR: Block check failed for contact {contact_id} / uid {uid}: {e}")
        # Unknown block state must not grant access.
        return True

def set_blocked_by_user(contact_id, uid, blocked=True):
    db = get_db()
    try:
        db.execute("""
            INSERT INTO user_contact (cid, uid, blocked) VALUES (?, ?, ?)
            ON CONFLICT(cid, uid) DO UPDATE SET blocked = excluded.blocked
        """, (contact_id, uid, 1 if blocked else 0))
        db.commit()
        return True
    except sqlite3.Error as e:
        db.rollback()
        print(f"ERROR: Could not update block for contact {contact_id} / uid {uid}: {e}")
        return False

def add_user_contact(uid, url, rel, addr=None, name=None):
    """Adds a contact row owned by local account uid. Returns the new ID or None."""
    db = get_db()
    cursor = db.cursor()
    try:
        cursor.execute("""
            INSERT INTO contacts (uid, url, nurl, addr, name, rel)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (uid, url, normalise_link(url), addr.lower() if addr else None, name, rel))
        db.commit()
        return cursor.lastrowid
    except sqlite3.Error as e:
        db.rollback()
        print(f"ERROR: Could not add contact {url} for uid {uid}: {e}")
        return None

def get_contacts_for_user(uid):
    """Returns the contacts owned by local account uid, friends first."""
    db = get_db()
    cursor = db.cursor()
    try:
        cursor.execute(f"""
            SELECT {CONTACT_COLUMNS} FROM contacts
            WHERE uid = ? AND blocked = 0 AND rel IN (?, ?, ?)
            ORDER BY rel DESC, name COLLATE NOCASE
        """, (uid, FOLLOWER, SHARING, FRIEND))
        return [dict(row) for row in cursor.fetchall()]
    except sqlite3.Error as e:
        print(f"ERROR: Could not load contacts for uid {uid}: {e}")
        return []
