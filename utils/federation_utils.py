# utils/federation_utils.py
import hmac
import hashlib
import json
import requests
from functools import wraps
from urllib.parse import urlparse
from flask import request, jsonify, current_app


def get_base_url():
    """
    The public base URL of this node, e.g. https://home.example
    Built from NODE_HOSTNAME; plain http only in insecure (development) mode.
    """
    insecure_mode = current_app.config.get('FEDERATION_INSECURE_MODE', False)
    protocol = "http" if insecure_mode else "https"
    hostname = current_app.config.get('NODE_HOSTNAME') or request.host
    return f"{protocol}://{hostname}"

def get_remote_node_api_url(node_hostname, endpoint, insecure_mode):
    """
    Constructs the full API URL for a remote node.
    """
    protocol = "http" if insecure_mode else "https"
    return f"{protocol}://{node_hostname}{endpoint}"

def get_hostname_from_url(url):
    """Returns the lowercased host[:port] part of a URL, or None."""
    if not url:
        return None
    netloc = urlparse(url).netloc
    return netloc.lower() if netloc else None

def sign_payload(shared_secret, body):
    """HMAC-SHA256 hex signature of a request body with a node's shared secret."""
    return hmac.new(
        shared_secret.encode('utf-8'),
        msg=body,
        digestmod=hashlib.sha256
    ).hexdigest()

def signature_required(f):
    """
    A decorator to protect federation API endpoints. It ensures that incoming
    requests are from a known, connected node and are correctly signed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        # Import moved inside to avoid circular dependencies with db_queries
        from db_queries.federation import get_node_by_hostname

        remote_hostname = request.headers.get('X-Node-Hostname')
        signature_header = request.headers.get('X-Node-Signature')

        if not remote_hostname or not signature_header:
            return jsonify({'error': 'Missing federation headers'}), 401

        node = get_node_by_hostname(remote_hostname)
        if not node or node['status'] != 'connected' or not node['shared_secret']:
            return jsonify({'error': 'Unknown or not-connected node'}), 403

        expected_signature = sign_payload(node['shared_secret'], request.get_data())
        if not hmac.compare_digest(expected_signature, signature_header):
            return jsonify({'error': 'Invalid signature'}), 403

        return f(*args, **kwargs)
    return decorated_function

def send_signed_request(hostname, endpoint, payload, timeout=10):
    """
    Sends a signed POST to a connected node and returns the decoded JSON reply,
    or None if the node is unknown or the request failed.
    """
    from db_queries.federation import get_node_by_hostname

    node = get_node_by_hostname(hostname)
    if not node or node['status'] != 'connected' or not node['shared_secret']:
        print(f"Skipping signed request to {hostname}: Node not connected or missing secret.")
        return None

    request_body = json.dumps(payload, sort_keys=True).encode('utf-8')
    headers = {
        'Content-Type': 'application/json',
        'X-Node-Hostname': current_app.config.get('NODE_HOSTNAME'),
        'X-Node-Signature': sign_payload(node['shared_secret'], request_body)
    }

    insecure_mode = current_app.config.get('FEDERATION_INSECURE_MODE', False)
    api_url = get_remote_node_api_url(hostname, endpoint, insecure_mode)

    try:
        response = requests.post(api_url, data=request_body, headers=headers,
                                 timeout=timeout, verify=not insecure_mode)
        response.raise_for_status()
        return response.json()
    except requests.RequestException as e:
        print(f"ERROR: Failed to send signed request to {api_url}: {e}")
        if e.response is not None:
            print(f"Remote server response status: {e.response.status_code}")
        return None
    except ValueError as e:
        print(f"ERROR: Invalid JSON reply from {api_url}: {e}")
        return None
