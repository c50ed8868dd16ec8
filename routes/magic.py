# routes/magic.py
from flask import Blueprint, request, jsonify, current_app, session, redirect

from db_queries.contacts import get_contact_id_for_url
from db_queries.federation import get_node_by_hostname
from db_queries.openwebauth_tokens import create_token
from db_queries.users import get_user_by_id
from utils.federation_utils import signature_required, get_hostname_from_url
from utils.magic_auth import fetch_remote_token, token_serializer, debug, OWT_TOKEN_TYPE, OWT_SALT
from utils.zrl import is_url_valid, strip_query_param, strip_zrls

magic_bp = Blueprint('magic', __name__)


def _append_param(url, key, value):
    separator = '&' if '?' in url else '?'
    return f"{url}{separator}{key}={value}"

@magic_bp.route('/magic', methods=['GET'])
def magic():
    """
    Home side of magic auth. Without a destination this only answers the
    reachability probe. With owa=1 and a logged-in local user, a token is
    obtained from the destination node and appended to the redirect.
    """
    dest = request.args.get('dest', '')
    if not dest:
        return jsonify({'magic': True, 'owa': True}), 200

    if not is_url_valid(dest):
        return jsonify({'error': 'Invalid destination.'}), 400

    user_id = session.get('user_id')
    if not user_id or request.args.get('owa') != '1':
        return redirect(dest)

    user = get_user_by_id(user_id)
    if not user:
        return redirect(dest)

    target_host = get_hostname_from_url(dest)
    own_host = (current_app.config.get('NODE_HOSTNAME') or '').lower()
    if target_host == own_host:
        return redirect(dest)

    handle = f"{user['nickname']}@{own_host}"
    token = fetch_remote_token(target_host, handle)
    if not token:
        debug(f"No OpenWebAuth token from {target_host} for {handle}")
        return redirect(dest)

    # A stale owt would shadow the new one on the receiving node
    dest = strip_query_param(strip_zrls(dest), 'owt')
    return redirect(_append_param(dest, 'owt', token))


@magic_bp.route('/owa', methods=['POST'])
@signature_required
def owa():
    """
    Destination side: issue a short-lived token for a visitor of the calling node.
    """
    data = request.get_json(silent=True) or {}
    handle = (data.get('handle') or '').strip().lower()
    if not handle or '@' not in handle:
        return jsonify({'error': 'handle is required.'}), 400

    remote_hostname = request.headers.get('X-Node-Hostname', '').lower()
    if handle.rpartition('@')[2] != remote_hostname:
        return jsonify({'error': 'Handle does not belong to the requesting node.'}), 403

    if not get_contact_id_for_url(handle):
        return jsonify({'error': 'Visitor could not be resolved.'}), 404

    token = create_token(OWT_TOKEN_TYPE, 0, handle)
    if not token:
        return jsonify({'error': 'Could not issue token.'}), 500

    node = get_node_by_hostname(remote_hostname)
    if not node or not node['shared_secret']:
        print(f"ERROR: No shared secret on record for {remote_hostname}")
        return jsonify({'error': 'Could not sign token.'}), 500

    signed_token = token_serializer(node['shared_secret']).dumps(token, salt=OWT_SALT)
    print(f"INFO: Issued OpenWebAuth token for {handle}")
    return jsonify({'success': True, 'token': signed_token}), 200
