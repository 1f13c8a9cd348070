"""Role-mutation guard: validates and applies admin-initiated role changes.

Checks run in a fixed order and the first failure wins:

1. the actor must be an admin                       -> Forbidden
2. the requested role must exist                    -> InvalidInput
3. an admin may not demote themselves               -> SelfDemotionForbidden
4. the last remaining admin may not be demoted      -> LastAdminProtected
5. the role is written and one audit entry recorded

A rejection never writes anything.
"""
from __future__ import annotations
import logging
import threading
from dataclasses import dataclass
from typing import Optional

from .audit import AuditSink
from .exceptions import (
    Forbidden,
    InvalidInput,
    LastAdminProtected,
    NotFound,
    SelfDemotionForbidden,
    ServiceUnavailable,
)
from .models import ROLE_ADMIN, ROLES, User
from .users import UserStore, to_object_id

logger = logging.getLogger(__name__)

# Serializes every admin-count-dependent mutation (demotion and deletion)
# within this process.
ADMIN_ROLE_CHANGES_LOCK = threading.Lock()


@dataclass(frozen=True)
class RoleChangeResult:
    target_user_id: str
    previous_role: str
    applied_role: str

    def to_dict(self) -> dict:
        return {
            "ok": True,
            "userId": self.target_user_id,
            "previousRole": self.previous_role,
            "appliedRole": self.applied_role,
        }


class RoleMutationGuard:
    """Applies role changes while preserving the admin invariants."""

    def __init__(self, users: UserStore, audit: AuditSink, lock: Optional[threading.Lock] = None):
        self.users = users
        self.audit = audit
        self._lock = lock or ADMIN_ROLE_CHANGES_LOCK

    def change_role(
        self,
        actor_id: str,
        actor_role: str,
        target_user_id: str,
        requested_role: str,
        *,
        actor_label: str = "",
    ) -> RoleChangeResult:
        """Validate and apply a role change.

        Args:
            actor_id: Id of the admin performing the change
            actor_role: Role of the actor at request time
            target_user_id: Id of the user whose role changes
            requested_role: Role to apply
            actor_label: Human-readable actor (used in notifications)

        Returns:
            RoleChangeResult with the previous and applied roles

        Raises:
            Forbidden, InvalidInput, SelfDemotionForbidden, NotFound,
            LastAdminProtected, ServiceUnavailable
        """
        if actor_role != ROLE_ADMIN:
            raise Forbidden()

        if requested_role not in ROLES:
            raise InvalidInput("Invalid role")

        if _same_user(actor_id, target_user_id) and requested_role != ROLE_ADMIN:
            raise SelfDemotionForbidden()

        with self._lock:
            target = self.users.find_by_id(target_user_id)
            if target is None:
                raise NotFound()

            if target.role == ROLE_ADMIN and requested_role != ROLE_ADMIN:
                if self.users.admin_count() <= 1:
                    raise LastAdminProtected()

            if not self.users.update_role(target.id, requested_role, expected_role=target.role):
                # Target changed or vanished between read and write.
                logger.warning("Role change for %s lost a concurrent update; aborting", target.id)
                raise ServiceUnavailable("User was modified concurrently. Please retry.")

        logger.info("Role of %s changed %s -> %s by %s", target.id, target.role, requested_role, actor_id)

        self.audit.record(
            actor_id,
            "UPDATE_ROLE",
            target.id,
            {"previousRole": target.role, "newRole": requested_role},
            actor_label=actor_label,
            target_label=target.email,
        )

        return RoleChangeResult(
            target_user_id=target.id,
            previous_role=target.role,
            applied_role=requested_role,
        )

    def delete_user(self, actor_id: str, actor_role: str, target_user_id: str, *, actor_label: str = "") -> User:
        """Delete a user under the same admin invariants as a demotion.

        Raises:
            Forbidden: Actor is not an admin, or targets their own account
            NotFound: Target does not exist
            LastAdminProtected: Target is the only admin
            ServiceUnavailable: On storage failure
        """
        if actor_role != ROLE_ADMIN:
            raise Forbidden()
        if _same_user(actor_id, target_user_id):
            raise Forbidden("Admins cannot delete their own account")

        with self._lock:
            target = self.users.find_by_id(target_user_id)
            if target is None:
                raise NotFound()
            if target.role == ROLE_ADMIN and self.users.admin_count() <= 1:
                raise LastAdminProtected("Cannot delete the last remaining admin")
            if not self.users.delete(target.id, expected_role=target.role):
                raise ServiceUnavailable("User was modified concurrently. Please retry.")

        logger.info("User %s (%s) deleted by %s", target.id, target.email, actor_id)

        self.audit.record(
            actor_id,
            "DELETE_USER",
            target.id,
            {"email": target.email, "role": target.role},
            actor_label=actor_label,
            target_label=target.email,
        )
        return target


def _same_user(actor_id: str, target_user_id: str) -> bool:
    """Compare ids as ObjectIds so differently-cased hex names the same user."""
    actor_oid = to_object_id(actor_id)
    target_oid = to_object_id(target_user_id)
    if actor_oid is None or target_oid is None:
        return actor_id == target_user_id
    return actor_oid == target_oid
