from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request, session
from flask_login import current_user, login_required, login_user, logout_user
from werkzeug.security import check_password_hash

from app.core.i18n import SUPPORTED_LANGS, DEFAULT_LANG
from app.core.models import User

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _credentials() -> tuple[str, str]:
    data = request.get_json(silent=True) or request.form
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    return email, password


@auth_bp.post("/login")
def login_post():
    email, password = _credentials()
    user = User.query.filter_by(email=email).first()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        logger.warning("Failed login for %s", email or "<empty>")
        return jsonify({"success": False, "error": {"code": "INVALID_CREDENTIALS", "message": "Invalid credentials"}}), 401
    login_user(user)
    return jsonify({"success": True, "data": {"id": user.id, "email": user.email, "role": user.role.value}})


@auth_bp.post("/logout")
@login_required
def logout():
    logout_user()
    return jsonify({"success": True})


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(
        {
            "success": True,
            "data": {
                "id": current_user.id,
                "email": current_user.email,
                "fullName": current_user.full_name,
                "role": current_user.role.value,
            },
        }
    )


@auth_bp.post("/lang")
def set_lang():
    data = request.get_json(silent=True) or request.form
    lang = data.get("lang", DEFAULT_LANG)
    if lang not in SUPPORTED_LANGS:
        lang = DEFAULT_LANG
    session["lang"] = lang
    return jsonify({"success": True, "data": {"lang": lang}})
