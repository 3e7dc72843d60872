from flask import Blueprint

collective_burial_bp = Blueprint("collective_burial", __name__, url_prefix="/api")

from app.collective_burial import routes  # noqa: E402,F401
