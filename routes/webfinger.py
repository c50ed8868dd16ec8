# routes/webfinger.py
from flask import Blueprint, request, jsonify, current_app

from db_queries.users import get_user_by_nickname
from utils.federation_utils import get_base_url
from utils.probe import PROFILE_PAGE_REL, OPENWEBAUTH_REL, NAME_PROPERTY
from utils.zrl import PROFILE_PATH_SEGMENT

webfinger_bp = Blueprint('webfinger', __name__)


def _nickname_for_resource(resource):
    """Maps acct:nick@host or <base>/profile/nick to a local nickname, or None."""
    own_host = (current_app.config.get('NODE_HOSTNAME') or request.host).lower()

    if resource.startswith('acct:'):
        nick, _, host = resource[5:].rpartition('@')
        return nick if host.lower() == own_host else None

    prefix = get_base_url() + PROFILE_PATH_SEGMENT
    if resource.lower().startswith(prefix.lower()):
        return resource[len(prefix):].strip('/') or None
    return None

@webfinger_bp.route('/.well-known/webfinger', methods=['GET'])
def webfinger():
    resource = request.args.get('resource', '')
    if not resource:
        return jsonify({'error': 'resource is required.'}), 400

    nickname = _nickname_for_resource(resource)
    user = get_user_by_nickname(nickname) if nickname else None
    if not user:
        return jsonify({'error': 'Not found.'}), 404

    base_url = get_base_url()
    own_host = (current_app.config.get('NODE_HOSTNAME') or request.host).lower()
    profile_url = f"{base_url}/profile/{user['nickname']}"

    jrd = {
        'subject': f"acct:{user['nickname']}@{own_host}",
        'aliases': [profile_url],
        'properties': {NAME_PROPERTY: user['display_name']},
        'links': [
            {'rel': PROFILE_PAGE_REL, 'type': 'text/html', 'href': profile_url},
            {'rel': OPENWEBAUTH_REL, 'type': 'application/json', 'href': f"{base_url}/owa"},
        ]
    }
    response = jsonify(jrd)
    response.headers['Content-Type'] = 'application/jrd+json'
    response.headers['Access-Control-Allow-Origin'] = '*'
    return response
