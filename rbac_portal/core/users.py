"""User store: the only code that touches the ``users`` collection.

Every pymongo failure is translated to ``ServiceUnavailable`` so that callers
on the mutation path abort instead of reporting a partial success.
"""
from __future__ import annotations
import logging
from typing import Any, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from .database import Collections
from .exceptions import Conflict, ServiceUnavailable
from .models import ROLE_ADMIN, ROLE_USER, User, utcnow

logger = logging.getLogger(__name__)


def to_object_id(value: str) -> Optional[ObjectId]:
    """Parse a user id; None when the string is not a valid ObjectId."""
    if isinstance(value, ObjectId):
        return value
    if not value or not isinstance(value, str):
        return None
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


class UserStore:
    """Data access for user records."""

    def __init__(self, db: Database):
        self._collection: Collection = db[Collections.USERS]

    def find_by_id(self, user_id: str) -> Optional[User]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        try:
            doc = self._collection.find_one({"_id": oid})
        except PyMongoError as exc:
            raise ServiceUnavailable() from exc
        return User.from_document(doc) if doc else None

    def find_by_email(self, email: str) -> Optional[User]:
        try:
            doc = self._collection.find_one({"email": email})
        except PyMongoError as exc:
            raise ServiceUnavailable() from exc
        return User.from_document(doc) if doc else None

    def count_by_role(self, role: str) -> int:
        try:
            return self._collection.count_documents({"role": role})
        except PyMongoError as exc:
            raise ServiceUnavailable() from exc

    def list_users(self) -> list[User]:
        try:
            docs = list(self._collection.find({}).sort("created_at", ASCENDING))
        except PyMongoError as exc:
            raise ServiceUnavailable() from exc
        return [User.from_document(doc) for doc in docs]

    def create(
        self,
        *,
        email: str,
        name: str,
        role: str = ROLE_USER,
        password_hash: Optional[str] = None,
        oauth_provider: Optional[str] = None,
    ) -> User:
        """Insert a new user.

        Raises:
            Conflict: If the email is already registered
            ServiceUnavailable: On storage failure
        """
        doc: dict[str, Any] = {
            "email": email,
            "name": name,
            "role": role,
            "password_hash": password_hash,
            "created_at": utcnow(),
        }
        if oauth_provider:
            doc["oauth_provider"] = oauth_provider
        try:
            result = self._collection.insert_one(doc)
        except DuplicateKeyError as exc:
            raise Conflict() from exc
        except PyMongoError as exc:
            raise ServiceUnavailable() from exc
        doc["_id"] = result.inserted_id
        return User.from_document(doc)

    def update_role(self, user_id: str, role: str, *, expected_role: Optional[str] = None) -> bool:
        """Set a user's role.

        When ``expected_role`` is given the write only applies if the stored
        role still equals it (compare-and-set). Returns True when a document
        matched.
        """
        oid = to_object_id(user_id)
        if oid is None:
            return False
        query: dict[str, Any] = {"_id": oid}
        if expected_role is not None:
            query["role"] = expected_role
        try:
            result = self._collection.update_one(query, {"$set": {"role": role}})
        except PyMongoError as exc:
            raise ServiceUnavailable() from exc
        return result.matched_count == 1

    def set_password(self, user_id: str, password_hash: str) -> bool:
        oid = to_object_id(user_id)
        if oid is None:
            return False
        try:
            result = self._collection.update_one({"_id": oid}, {"$set": {"password_hash": password_hash}})
        except PyMongoError as exc:
            raise ServiceUnavailable() from exc
        return result.matched_count == 1

    def link_oauth_provider(self, user_id: str, provider: str) -> Optional[User]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        try:
            doc = self._collection.find_one_and_update(
                {"_id": oid},
                {"$set": {"oauth_provider": provider}},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as exc:
            raise ServiceUnavailable() from exc
        return User.from_document(doc) if doc else None

    def delete(self, user_id: str, *, expected_role: Optional[str] = None) -> bool:
        oid = to_object_id(user_id)
        if oid is None:
            return False
        query: dict[str, Any] = {"_id": oid}
        if expected_role is not None:
            query["role"] = expected_role
        try:
            result = self._collection.delete_one(query)
        except PyMongoError as exc:
            raise ServiceUnavailable() from exc
        return result.deleted_count == 1

    def admin_count(self) -> int:
        return self.count_by_role(ROLE_ADMIN)
