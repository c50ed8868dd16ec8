# utils/probe.py
"""
WebFinger discovery of remote actors.

A remote actor is identified either by a profile URL
(https://remote.example/profile/alice) or by a handle (alice@remote.example).
Both are resolved by asking the actor's node for its JRD document.
"""
import requests
from urllib.parse import urlparse
from flask import current_app

PROFILE_PAGE_REL = 'http://webfinger.net/rel/profile-page'
OPENWEBAUTH_REL = 'http://purl.org/openwebauth/v1'
NAME_PROPERTY = 'http://schema.org/name'


def _webfinger_request(url_or_handle):
    """Returns (webfinger url, resource) for a URL or handle, or (None, None)."""
    insecure_mode = current_app.config.get('FEDERATION_INSECURE_MODE', False)

    if '://' in url_or_handle:
        parsed = urlparse(url_or_handle)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            return None, None
        return f"{parsed.scheme}://{parsed.netloc}/.well-known/webfinger", url_or_handle

    handle = url_or_handle[5:] if url_or_handle.startswith('acct:') else url_or_handle
    nick, _, host = handle.rpartition('@')
    if not nick or not host:
        return None, None
    protocol = "http" if insecure_mode else "https"
    return f"{protocol}://{host}/.well-known/webfinger", f"acct:{handle}"

def parse_jrd(jrd):
    """Extracts {url, addr, name, network} from a WebFinger JRD, or None without a profile page."""
    url = None
    network = 'unknown'
    for link in jrd.get('links', []):
        if link.get('rel') == PROFILE_PAGE_REL and link.get('href'):
            url = link['href']
        elif link.get('rel') == OPENWEBAUTH_REL:
            network = 'owa'
    if not url:
        return None

    subject = jrd.get('subject', '')
    addr = subject[5:] if subject.startswith('acct:') else None
    if not addr:
        for alias in jrd.get('aliases', []):
            if alias.startswith('acct:'):
                addr = alias[5:]
                break

    name = jrd.get('properties', {}).get(NAME_PROPERTY)
    if not name and addr:
        name = addr.split('@')[0]

    return {'url': url, 'addr': addr.lower() if addr else None, 'name': name, 'network': network}

def probe_url(url_or_handle):
    """
    Discovers a remote actor. Returns {url, addr, name, network} or None if
    the actor's node could not be reached or does not know the actor.
    """
    if not url_or_handle:
        return None

    webfinger_url, resource = _webfinger_request(url_or_handle)
    if not webfinger_url:
        return None

    insecure_mode = current_app.config.get('FEDERATION_INSECURE_MODE', False)
    try:
        response = requests.get(
            webfinger_url,
            params={'resource': resource},
            headers={'Accept': 'application/jrd+json, application/json'},
            timeout=current_app.config.get('WEBFINGER_TIMEOUT', 10),
            verify=not insecure_mode
        )
        response.raise_for_status()
        return parse_jrd(response.json())
    except requests.RequestException as e:
        print(f"ERROR: WebFinger lookup for {url_or_handle} failed: {e}")
        return None
    except ValueError as e:
        print(f"ERROR: WebFinger reply for {url_or_handle} is not valid JSON: {e}")
        return None

def update_contact_from_probe(url):
    """Background job: re-discover an actor and refresh its public contact."""
    from db_queries.contacts import upsert_public_contact

    data = probe_url(url)
    if not data:
        print(f"INFO: Probe of {url} returned nothing, contact left unchanged")
        return
    contact_id = upsert_public_contact(data)
    if contact_id:
        print(f"SUCCESS: Refreshed contact {contact_id} from {data['url']}")
