# routes/profile.py
from flask import Blueprint, render_template, session, abort

from db_queries.contacts import get_contact_by_id, get_contacts_for_user
from db_queries.users import get_user_by_id, get_user_by_nickname
from utils.federation_utils import get_base_url
from utils.magic_auth import remote_contact_for
from utils.zrl import PROFILE_PATH_SEGMENT, get_my_url, zrl

profile_bp = Blueprint('profile', __name__)


def _viewer_url():
    """Profile URL of whoever is looking: a local account or a remote visitor."""
    user_id = session.get('user_id')
    if user_id:
        viewer = get_user_by_id(user_id)
        if viewer:
            return get_base_url() + PROFILE_PATH_SEGMENT + viewer['nickname']
    return get_my_url(session)

@profile_bp.route('/profile/<nickname>')
def profile(nickname):
    """
    Landing page for profile links. Shows whether the current remote visitor
    is recognised as one of this account's contacts.
    """
    user = get_user_by_nickname(nickname)
    if not user:
        abort(404)

    visitor_contact = None
    contact_id = remote_contact_for(session, user['id'])
    if contact_id:
        visitor_contact = get_contact_by_id(contact_id)

    # Links to remote profiles carry the viewer's identity so those nodes can recognise them
    my_url = _viewer_url()
    contacts = [dict(contact, link=zrl(contact['url'], my_url)) for contact in get_contacts_for_user(user['id'])]

    return render_template(
        'profile.html',
        user=user,
        contacts=contacts,
        visitor_contact=visitor_contact,
        visitor_handle=session.get('visitor_handle'),
        is_owner=session.get('user_id') == user['id'],
    )
