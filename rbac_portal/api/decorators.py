"""
Flask decorators for authentication and authorization.

Session-based: the logged-in user is re-read from MongoDB on every request,
so role checks always see the stored role.
"""

import logging
from functools import wraps
from typing import Any, Dict

from flask import current_app, g, request

from rbac_portal.core.exceptions import Forbidden, InvalidInput, Unauthorized
from rbac_portal.core.models import ROLE_ADMIN
from rbac_portal.core.rbac import current_user

logger = logging.getLogger(__name__)


def get_services():
    """Service container built by create_app()."""
    return current_app.extensions["rbac_portal"]


def json_body() -> Dict[str, Any]:
    """Request body as a dict.

    Raises:
        InvalidInput: If the body is not a JSON object
    """
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise InvalidInput("Request body must be a JSON object")
    return payload


def login_required(fn):
    """Require an authenticated session; exposes the user as ``g.user``."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        user = current_user()
        if user is None:
            raise Unauthorized("Authentication required")
        g.user = user
        return fn(*args, **kwargs)
    return wrapper


def require_role(*required_roles: str):
    """
    Decorator to require any of the specified roles.

    Example:
        @bp.route("/admin/users")
        @require_role("admin")
        def list_users():
            ...
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = current_user()
            if user is None:
                raise Unauthorized("Authentication required")
            if user.role not in required_roles:
                logger.warning(
                    "Access denied for %s to %s (role=%s)", user.id, request.path, user.role
                )
                raise Forbidden()
            g.user = user
            return fn(*args, **kwargs)
        return wrapper
    return decorator


require_admin = require_role(ROLE_ADMIN)
