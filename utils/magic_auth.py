# utils/magic_auth.py
"""
Magic auth (OpenWebAuth): lets a visitor who is logged in on their home node
be recognised as a known contact on this node without an account here.

Initiation (zrl_init): a visitor arrives with ?zrl=<their profile URL>.
We send them home to <their node>/magic, which asks our /owa endpoint for a
token on their behalf and sends them back with ?owt=<token>.

Completion (openwebauth_init): the token is looked up, the visitor's
session fields are built and handed back to the caller to store.

Every failure is a silent no-op: the page continues for an anonymous visitor.
"""
import requests
from urllib.parse import quote_plus
from flask import current_app, request
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired

from db_queries.cache import try_mark
from db_queries.contacts import (get_contact_id_for_url, get_contact_by_id, get_connected_contacts,
                                 is_blocked_by_user, compare_link, FOLLOWER, FRIEND)
from db_queries.openwebauth_tokens import get_meta, purge
from utils import hooks
from utils import worker
from utils.federation_utils import get_base_url, send_signed_request
from utils.zrl import is_url_valid, get_base_path, get_my_url, rewrite_zrl_markers

OWT_TOKEN_TYPE = 'owt'
OWT_SALT = 'owt-token-salt'

# Session keys owned by the visitor session
SESSION_FIELDS = ('authenticated', 'visitor_id', 'visitor_handle', 'visitor_home', 'my_url', 'remote')


def debug(message):
    if current_app.config.get('MAGIC_AUTH_DEBUG'):
        print(f"DEBUG: {message}")


class RemoteAuthContext:
    """Everything the handshake needs to know about the current request."""

    def __init__(self, base_url, query_string, my_url=None, local_user_id=None,
                 remote_user_id=None, visitor_home=None):
        self.base_url = base_url.rstrip('/')
        # Path and query without the leading slash, e.g. 'profile/bob?zrl=...'
        self.query_string = query_string.lstrip('/')
        self.cmd = self.query_string.split('?')[0]
        self.my_url = my_url
        self.local_user_id = local_user_id
        self.remote_user_id = remote_user_id
        self.visitor_home = visitor_home
        self.visitor = None

    @classmethod
    def from_request(cls, session):
        query_string = request.full_path.rstrip('?')
        return cls(
            base_url=get_base_url(),
            query_string=query_string,
            my_url=get_my_url(session),
            local_user_id=session.get('user_id'),
            remote_user_id=remote_user(session),
            visitor_home=session.get('visitor_home'),
        )


def remote_user(session):
    """The public contact ID of the authenticated remote visitor, or None."""
    if session.get('authenticated') and session.get('visitor_id'):
        return session['visitor_id']
    return None

def remote_contact_for(session, uid):
    """The contact ID the visitor has with local account uid, or None."""
    if not remote_user(session):
        return None
    for visitor in session.get('remote') or []:
        if visitor.get('uid') == uid:
            return visitor.get('cid')
    return None

def magic_endpoint_reachable(base_path):
    """True if <base_path>/magic answers with a 2xx within the probe timeout."""
    insecure_mode = current_app.config.get('FEDERATION_INSECURE_MODE', False)
    try:
        response = requests.get(
            base_path + '/magic',
            timeout=current_app.config.get('MAGIC_PROBE_TIMEOUT', 5),
            verify=not insecure_mode
        )
        return response.ok
    except requests.RequestException as e:
        debug(f"Magic endpoint at {base_path} unreachable: {e}")
        return False

def zrl_init(ctx):
    """
    Start a magic-auth handshake for the visitor claimed in ctx.my_url.
    Returns the URL to redirect the visitor to, or None to carry on.
    """
    my_url = is_url_valid(ctx.my_url)
    if not my_url or ctx.local_user_id:
        return None

    if ctx.remote_user_id and ctx.visitor_home and compare_link(ctx.visitor_home, my_url):
        debug(f"The visitor {my_url} is already authenticated")
        return None

    hooks.call_all('zrl_init', {'zrl': my_url, 'url': ctx.cmd})

    contact_id = get_contact_id_for_url(my_url)
    if not contact_id:
        debug(f"No contact record found for {my_url}")
        return None

    contact = get_contact_by_id(contact_id)
    if not contact:
        return None

    if ctx.remote_user_id and ctx.remote_user_id == contact['id']:
        debug(f"The visitor {my_url} is already authenticated")
        return None

    # Avoid endless loops
    if not try_mark('zrlInit:' + my_url, current_app.config.get('ZRL_LOOP_GUARD_TTL', 60)):
        debug(f"URL {my_url} already tried to authenticate.")
        return None

    debug(f"Not authenticated. Invoking reverse magic-auth for {my_url}")

    worker.add(worker.PRIORITY_LOW, 'GProbe', my_url)

    # Send them home to do a proper magic auth, marking the way back so it does not recurse.
    destination = ctx.base_url + '/' + rewrite_zrl_markers(ctx.query_string)
    dest = quote_plus(destination)

    base_path = get_base_path(contact['url'])

    if base_path != ctx.base_url and '/magic' not in destination and '/rmagic' not in destination:
        magic_path = f"{base_path}/magic?f=&owa=1&dest={dest}"

        # Only redirect if the remote node understands /magic at all
        if magic_endpoint_reachable(base_path):
            debug(f"Doing magic auth for visitor {my_url} to {magic_path}")
            return magic_path
        debug(f"Node {base_path} does not support magic auth")

    return None

def add_visitor_cookie_for_handle(handle):
    """
    Build the session fields that authenticate the visitor behind handle.
    Returns a dict with SESSION_FIELDS plus 'contact', or None if the
    handle cannot be resolved.
    """
    contact_id = get_contact_id_for_url(handle)
    if not contact_id:
        debug(f"unable to finger {handle}")
        return None

    visitor = get_contact_by_id(contact_id)
    if not visitor:
        return None

    remote = []
    for contact in get_connected_contacts(visitor['nurl'], (FOLLOWER, FRIEND)):
        if contact['uid'] == 0 or is_blocked_by_user(visitor['id'], contact['uid']):
            continue
        remote.append({'cid': contact['id'], 'uid': contact['uid'], 'url': visitor['url']})

    print(f"INFO: Authenticated visitor {visitor['url']}")

    return {
        'authenticated': 1,
        'visitor_id': visitor['id'],
        'visitor_handle': visitor['addr'],
        'visitor_home': visitor['url'],
        'my_url': visitor['url'],
        'remote': remote,
        'contact': visitor,
    }

def apply_visitor_session(session, visitor):
    """Store a visitor built by add_visitor_cookie_for_handle in the session."""
    for field in SESSION_FIELDS:
        session[field] = visitor[field]
    # Replaced, never merged with a previous visitor's list
    session['remote'] = list(visitor['remote'])

def openwebauth_init(ctx, token):
    """
    Complete a handshake with the token the visitor's home node obtained for them.
    Returns the visitor (see add_visitor_cookie_for_handle) or None.
    """
    purge(OWT_TOKEN_TYPE, current_app.config.get('OWT_MAX_AGE', 180))

    visitor_handle = get_meta(OWT_TOKEN_TYPE, 0, token,
                              consume=current_app.config.get('OWT_SINGLE_USE', True))
    if visitor_handle is None:
        debug("OpenWebAuth: unknown or expired token")
        return None

    visitor = add_visitor_cookie_for_handle(visitor_handle)
    if not visitor:
        return None

    data = hooks.call_all('magic_auth_success', {'visitor': visitor['contact'], 'url': ctx.query_string})
    visitor['contact'] = data['visitor']
    ctx.visitor = visitor

    debug(f"OpenWebAuth: auth success from {visitor['visitor_handle']}")
    return visitor

def token_serializer(shared_secret):
    return URLSafeTimedSerializer(shared_secret)

def fetch_remote_token(hostname, handle):
    """
    Home side: ask node hostname to issue an OpenWebAuth token for our local
    account handle. Returns the token, or None.
    """
    from db_queries.federation import get_node_by_hostname

    reply = send_signed_request(hostname, '/owa', {'handle': handle})
    if not reply or not reply.get('success') or not reply.get('token'):
        return None

    node = get_node_by_hostname(hostname)
    if not node or not node['shared_secret']:
        return None

    try:
        return token_serializer(node['shared_secret']).loads(
            reply['token'], salt=OWT_SALT, max_age=current_app.config.get('OWT_MAX_AGE', 180))
    except SignatureExpired:
        print(f"ERROR: Token from {hostname} for {handle} has already expired")
        return None
    except BadSignature as e:
        print(f"ERROR: Token from {hostname} for {handle} failed verification: {e}")
        return None
