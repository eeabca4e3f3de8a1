from flask import jsonify, request
from flask_login import current_user, login_required, login_user, logout_user

from shelfmark.auth import auth_bp
from shelfmark.extensions import db
from shelfmark.models import ApiToken, User


def _credentials(payload: dict) -> tuple[str, str]:
    return (payload.get("username") or "").strip(), payload.get("password") or ""


def _authenticate(username: str, password: str):
    user = User.query.filter_by(username=username).first()
    if user and user.is_active and user.check_password(password):
        return user
    return None


@auth_bp.route("/bootstrap-admin", methods=["POST"])
def bootstrap_admin():
    if User.query.count() > 0:
        return jsonify({"error": "bootstrap already completed"}), 409

    username, password = _credentials(request.get_json(silent=True) or {})
    if not username or not password:
        return jsonify({"error": "username and password are required"}), 400

    admin = User(username=username, is_admin=True, is_active=True)
    admin.set_password(password)
    db.session.add(admin)
    db.session.commit()
    return jsonify({"status": "created", "user_id": admin.id}), 201


@auth_bp.route("/token", methods=["POST"])
def create_token():
    payload = request.get_json(silent=True) or {}
    username, password = _credentials(payload)
    token_name = (payload.get("token_name") or "Shelfmark API Token").strip()

    user = _authenticate(username, password)
    if not user:
        return jsonify({"error": "invalid credentials"}), 401

    token, token_hash = ApiToken.issue_token()
    db.session.add(ApiToken(user_id=user.id, name=token_name, token_hash=token_hash))
    db.session.commit()
    return jsonify({"token": token, "token_name": token_name, "user_id": user.id})


@auth_bp.route("/login", methods=["POST"])
def login():
    if current_user.is_authenticated:
        return jsonify({"status": "ok", "user_id": current_user.id})

    user = _authenticate(*_credentials(request.get_json(silent=True) or {}))
    if not user:
        return jsonify({"error": "invalid credentials"}), 401
    login_user(user)
    return jsonify({"status": "ok", "user_id": user.id})


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"status": "logged_out"})
