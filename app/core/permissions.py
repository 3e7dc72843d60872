from __future__ import annotations

from functools import wraps

from flask import abort
from flask_login import current_user

from app.core.models import UserRole


def require_role(*roles: UserRole):
    allowed = {role.value for role in roles}

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if not current_user.is_authenticated:
                abort(401)
            if current_user.role.value not in allowed:
                abort(403)
            return fn(*args, **kwargs)

        return wrapper

    return decorator
