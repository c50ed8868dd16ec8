# routes/auth.py
from flask import Blueprint, render_template, request, redirect, url_for, session, flash

from db_queries.users import get_user_by_nickname
from utils.auth import check_password
from utils.magic_auth import SESSION_FIELDS

auth_bp = Blueprint('auth', __name__)

@auth_bp.route('/login', methods=['GET', 'POST'])
def login():
    """
    Handles local account login. Logging in ends any remote visitor session.
    """
    if request.method == 'POST':
        nickname = request.form.get('nickname', '').strip()
        password = request.form.get('password', '')

        user = get_user_by_nickname(nickname)
        if user and check_password(user['password'], password):
            for field in SESSION_FIELDS:
                session.pop(field, None)
            session['user_id'] = user['id']
            session['username'] = user['nickname']
            flash('Logged in successfully.', 'success')
            return redirect(url_for('profile.profile', nickname=user['nickname']))

        flash('Invalid nickname or password.', 'danger')

    return render_template('login.html')

@auth_bp.route('/logout')
def logout():
    """Ends the local login and any remote visitor session."""
    session.clear()
    flash('You have been logged out.', 'info')
    return redirect(url_for('auth.login'))
