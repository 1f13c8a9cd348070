"""Role-Based Access Control helpers."""
from __future__ import annotations
from typing import Optional

from flask import current_app, g, session

from .models import User

SESSION_USER_KEY = "user_id"


def login_user(user: User) -> None:
    """Bind ``user`` to the session (rotates the session contents)."""
    csrf_token = session.get("_csrf_token")
    session.clear()
    session[SESSION_USER_KEY] = user.id
    session.permanent = True
    if csrf_token:
        session["_csrf_token"] = csrf_token
    g.pop("current_user", None)


def clear_session() -> None:
    """Clear all session state."""
    session.clear()
    g.pop("current_user", None)


def is_authenticated() -> bool:
    """Check if user is authenticated."""
    return bool(session.get(SESSION_USER_KEY))


def current_user() -> Optional[User]:
    """Get the logged-in user, re-read from the store once per request.

    The role is never cached in the session, so a demotion takes effect on
    the next request.
    """
    if not is_authenticated():
        return None
    if "current_user" not in g:
        services = current_app.extensions["rbac_portal"]
        user = services.users.find_by_id(session[SESSION_USER_KEY])
        if user is None:
            # Account deleted while the session was alive.
            session.pop(SESSION_USER_KEY, None)
        g.current_user = user
    return g.current_user
