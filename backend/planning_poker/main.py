from flask import Blueprint, jsonify, redirect, session, url_for
import uuid

main = Blueprint('main', __name__)


@main.before_app_request
def ensure_session_identifier():
    # Durable per-browser identifier; Socket.IO handlers read it from the same cookie
    session.permanent = True
    if not session.get('sid'):
        session['sid'] = uuid.uuid4().hex


@main.route('/')
def index():
    return redirect(url_for('rooms.new_room'))


@main.route('/healthz')
def healthz():
    return jsonify({'status': 'ok'})
