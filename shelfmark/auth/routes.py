from flask import jsonify, request
from flask_login import current_user, login_required, login_user, logout_user

from shelfmark.auth import auth_bp
from shelfmark.models import User


def _credentials() -> tuple[str, str]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = request.form
    username = (payload.get("username") or "").strip()
    password = payload.get("password") or ""
    return username, password


@auth_bp.route("/login", methods=["POST"])
def login():
    if current_user.is_authenticated:
        return jsonify({"status": "ok", "user_id": current_user.id})

    username, password = _credentials()
    if not username or not password:
        return jsonify({"error": "username and password are required"}), 400

    user = User.query.filter_by(username=username).first()
    if user and user.is_active and user.check_password(password):
        login_user(user)
        return jsonify({"status": "ok", "user_id": user.id})
    return jsonify({"error": "invalid credentials"}), 401


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"status": "logged_out"})
