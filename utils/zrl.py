# utils/zrl.py
# Helpers for the 'zrl' visitor-identity parameter carried on profile links.

import re
from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode, quote_plus
from db_queries.contacts import compare_link

PROFILE_PATH_SEGMENT = '/profile/'

_HOST_RE = re.compile(r'^(localhost|[a-z0-9-]+(\.[a-z0-9-]+)+)(:\d+)?$', re.IGNORECASE)
_MARKER_RE = re.compile(r'([?&])(zrl|zid)=')


def get_my_url(session):
    """The identity URL the current visitor claims, or None."""
    return session.get('my_url') or None

def is_url_valid(url):
    """
    Returns url if it is a well-formed http(s) URL with a plausible host,
    otherwise None.
    """
    if not url or not isinstance(url, str) or any(c.isspace() for c in url):
        return None
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    if parts.scheme not in ('http', 'https') or not parts.netloc:
        return None
    if '@' in parts.netloc or not _HOST_RE.match(parts.netloc):
        return None
    return url

def is_profile_url(url):
    """A usable zrl: a valid URL with a /profile/ path and no query of its own."""
    if not is_url_valid(url):
        return False
    parts = urlsplit(url)
    return not parts.query and PROFILE_PATH_SEGMENT in parts.path

def get_base_path(profile_url):
    """The node base URL of a profile URL: everything before '/profile/'."""
    return profile_url.split(PROFILE_PATH_SEGMENT)[0]

def zrl(url, my_url, force=False):
    """
    Appends zrl=<my_url> to a link to someone else's profile so that the
    receiving node can start a magic-auth handshake for the visitor.
    """
    if not url:
        return url
    if PROFILE_PATH_SEGMENT not in url and not force:
        return url
    if force and not url.endswith('/'):
        url = url + '/'
    separator = '&' if '?' in url else '?'
    if my_url and not compare_link(my_url, url):
        return url + separator + 'zrl=' + quote_plus(my_url)
    return url

def strip_query_param(url, param):
    """Removes every occurrence of param from the query string of url."""
    parts = urlsplit(url)
    if not parts.query:
        return url
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != param]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))

def strip_zrls(url):
    return strip_query_param(url, 'zrl')

def rewrite_zrl_markers(query_string):
    """
    Renames inbound zrl/zid parameters to rzrl, so that a page reached after
    a magic-auth round trip does not start another handshake.
    """
    return _MARKER_RE.sub(r'\1rzrl=', query_string)
