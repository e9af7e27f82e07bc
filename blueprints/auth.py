from flask import Blueprint, request, jsonify
from flask_login import login_user, logout_user, login_required, current_user
from models import User

auth_bp = Blueprint('auth', __name__)


@auth_bp.route('/login', methods=['POST'])
def login():
    """Session login; accepts JSON or form data"""
    data = request.get_json(silent=True) or request.form
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''

    user = User.query.filter_by(username=username).first()
    if user and user.check_password(password) and user.active:
        login_user(user)
        return jsonify({'success': True, 'username': user.username})

    return jsonify({'error': 'Identifiants invalides ou compte désactivé.'}), 401


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'success': True})


@auth_bp.route('/me')
@login_required
def me():
    return jsonify({'id': current_user.id, 'username': current_user.username})
