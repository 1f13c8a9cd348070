"""Account lifecycle: registration, credential/OAuth login, password change."""
from __future__ import annotations
import hmac
import logging
from typing import Optional

from werkzeug.security import check_password_hash, generate_password_hash

from .audit import AuditSink
from .exceptions import InvalidInput, NotFound, Unauthorized
from .models import ROLE_ADMIN, ROLE_USER, User
from .users import UserStore
from .validators import validate_email, validate_name, validate_password

logger = logging.getLogger(__name__)


class AccountService:
    """Business logic behind the public auth endpoints."""

    def __init__(
        self,
        users: UserStore,
        audit: AuditSink,
        *,
        admin_registration_key: str = "",
        min_password_length: int = 6,
    ):
        self.users = users
        self.audit = audit
        self._admin_registration_key = admin_registration_key
        self.min_password_length = min_password_length

    def _is_admin_key(self, admin_key: Optional[str]) -> bool:
        if not admin_key or not self._admin_registration_key:
            return False
        return hmac.compare_digest(admin_key, self._admin_registration_key)

    def register(self, name: str, email: str, password: str, admin_key: Optional[str] = None) -> User:
        """Create a credentials account.

        The account is an admin only when ``admin_key`` matches the configured
        registration key.

        Raises:
            InvalidInput: On malformed name/email/password
            Conflict: If the email is taken
            ServiceUnavailable: On storage failure
        """
        try:
            name = validate_name(name)
            email = validate_email(email)
            validate_password(password, self.min_password_length)
        except ValueError as exc:
            raise InvalidInput(str(exc)) from exc

        role = ROLE_ADMIN if self._is_admin_key(admin_key) else ROLE_USER
        user = self.users.create(
            email=email,
            name=name,
            role=role,
            password_hash=generate_password_hash(password),
        )

        if role == ROLE_ADMIN:
            logger.warning("New admin created via registration key: %s", email)

        self.audit.record(
            user.id,
            "CREATE_USER",
            user.id,
            {"email": email, "role": role, "createdViaRegistration": True},
            actor_label=email,
            target_label=email,
        )
        return user

    def authenticate(self, email: str, password: str) -> User:
        """Verify credentials.

        Raises:
            Unauthorized: Unknown email, OAuth-only account or wrong password
            ServiceUnavailable: On storage failure
        """
        try:
            email = validate_email(email)
        except ValueError as exc:
            raise Unauthorized("Invalid email or password") from exc

        user = self.users.find_by_email(email)
        if user is None:
            raise Unauthorized("Invalid email or password")

        if not user.password_hash or not check_password_hash(user.password_hash, password or ""):
            self.audit.record(user.id, "LOGIN_FAILED", user.id, {"method": "credentials"})
            raise Unauthorized("Invalid email or password")

        self.audit.record(user.id, "LOGIN_SUCCESS", user.id, {"method": "credentials"})
        return user

    def login_oauth(self, email: str, name: str, provider: str) -> User:
        """Link or create the account behind an OAuth identity.

        An existing credentials account with the same e-mail is linked to the
        provider; otherwise a new ``user`` account without a password is
        created.
        """
        try:
            email = validate_email(email)
        except ValueError as exc:
            raise InvalidInput("OAuth provider returned no usable e-mail") from exc
        name = (name or "").strip() or email.split("@", 1)[0]

        user = self.users.find_by_email(email)
        if user is None:
            user = self.users.create(email=email, name=name, role=ROLE_USER, oauth_provider=provider)
            self.audit.record(
                user.id,
                "CREATE_USER",
                user.id,
                {"email": email, "role": ROLE_USER, "oauthProvider": provider},
            )
        elif not user.oauth_provider:
            user = self.users.link_oauth_provider(user.id, provider) or user

        self.audit.record(user.id, "LOGIN_SUCCESS", user.id, {"method": "oauth", "provider": provider})
        return user

    def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        """Change the password of the logged-in user.

        OAuth-only accounts (no password yet) may set one without
        ``current_password``.

        Raises:
            NotFound: User vanished
            Unauthorized: Current password wrong
            InvalidInput: New password too short
        """
        user = self.users.find_by_id(user_id)
        if user is None:
            raise NotFound()

        if user.password_hash and not check_password_hash(user.password_hash, current_password or ""):
            raise Unauthorized("Current password is incorrect")

        try:
            validate_password(new_password, self.min_password_length)
        except ValueError as exc:
            raise InvalidInput(str(exc)) from exc

        if not self.users.set_password(user.id, generate_password_hash(new_password)):
            raise NotFound()

        self.audit.record(user.id, "PASSWORD_CHANGED", user.id, {"method": "self_service"})
