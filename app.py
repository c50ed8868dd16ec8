# app.py
from flask import Flask, request, redirect, session, flash, current_app
import os
import traceback
from flask_compress import Compress

import db
from utils.cli import register_cli
from utils.magic_auth import (RemoteAuthContext, zrl_init, openwebauth_init, apply_visitor_session, debug)
from utils.worker import worker
from utils.zrl import is_profile_url

# Application version
__version__ = "0.3.0"

# Endpoints that never take part in the handshake
HANDSHAKE_EXEMPT_ENDPOINTS = {'magic.owa', 'webfinger.webfinger', 'static'}


def _env_flag(name, default='False'):
    return os.environ.get(name, default).lower() in ('true', '1', 't')

def _env_int(name, default):
    value = os.environ.get(name)
    return int(value) if value else default

def magic_auth_before_request():
    """
    Runs before each request. Starts a magic-auth handshake for visitors
    arriving with ?zrl= and completes one for visitors returning with ?owt=.
    Nothing here may break the page: failures leave the visitor anonymous.
    """
    if request.endpoint in HANDSHAKE_EXEMPT_ENDPOINTS:
        return None

    try:
        zrl_param = request.args.get('zrl')
        if zrl_param and not session.get('user_id'):
            if is_profile_url(zrl_param):
                if session.get('visitor_home') != zrl_param:
                    session['my_url'] = zrl_param
                    session['authenticated'] = 0
                target = zrl_init(RemoteAuthContext.from_request(session))
                if target:
                    return redirect(target)
            else:
                debug(f"Invalid ZRL parameter {zrl_param}")

        token = request.args.get('owt')
        if token:
            visitor = openwebauth_init(RemoteAuthContext.from_request(session), token)
            if visitor:
                apply_visitor_session(session, visitor)
                name = visitor['contact'].get('name') or visitor['visitor_handle']
                flash(f"OpenWebAuth: {current_app.config.get('NODE_HOSTNAME')} welcomes {name}", 'info')
    except Exception as e:
        print(f"ERROR: Magic auth failed, continuing anonymously: {e}")
        traceback.print_exc()

    return None


def create_app(test_config=None):
    app = Flask(__name__)
    Compress(app)

    # Load secret key from environment variable.
    # IMPORTANT: In a production environment, this should be a long, random, and securely stored string.
    secret_key = os.environ.get('SECRET_KEY')
    if not secret_key:
        print("WARNING: SECRET_KEY environment variable not set. Using a temporary, insecure key. Sessions will not persist across restarts.")
        secret_key = os.urandom(24)

    app.config.from_mapping(
        SECRET_KEY=secret_key,
        DATABASE=os.environ.get('DATABASE', os.path.join(app.instance_path, 'magic_node.db')),
        NODE_HOSTNAME=os.environ.get('NODE_HOSTNAME'),
        FEDERATION_INSECURE_MODE=_env_flag('FEDERATION_INSECURE_MODE'),
        # Handshake tuning (seconds)
        MAGIC_PROBE_TIMEOUT=_env_int('MAGIC_PROBE_TIMEOUT', 5),
        WEBFINGER_TIMEOUT=_env_int('WEBFINGER_TIMEOUT', 10),
        OWT_MAX_AGE=_env_int('OWT_MAX_AGE', 180),
        ZRL_LOOP_GUARD_TTL=_env_int('ZRL_LOOP_GUARD_TTL', 60),
        OWT_SINGLE_USE=_env_flag('OWT_SINGLE_USE', 'True'),
        MAGIC_AUTH_DEBUG=_env_flag('MAGIC_AUTH_DEBUG'),
        # Background worker
        WORKER_ENABLED=_env_flag('WORKER_ENABLED', 'True'),
        WORKER_MAX_RETRIES=_env_int('WORKER_MAX_RETRIES', 3),
        WORKER_POLL_INTERVAL=_env_int('WORKER_POLL_INTERVAL', 30),
        # Compression
        COMPRESS_MIMETYPES=['text/html', 'text/css', 'application/json', 'application/jrd+json'],
        COMPRESS_LEVEL=6,
        COMPRESS_MIN_SIZE=500,
        APP_VERSION=__version__,
    )
    if test_config:
        app.config.update(test_config)

    os.makedirs(app.instance_path, exist_ok=True)

    # Register database connection/teardown functions and create the schema
    db.init_app(app)

    worker.init_app(app)
    if app.config['WORKER_ENABLED']:
        worker.start()

    register_cli(app)

    # Import route blueprints just before registration to avoid circular dependencies
    from routes.auth import auth_bp
    from routes.magic import magic_bp
    from routes.profile import profile_bp
    from routes.webfinger import webfinger_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(magic_bp)
    app.register_blueprint(profile_bp)
    app.register_blueprint(webfinger_bp)

    app.before_request(magic_auth_before_request)

    return app
