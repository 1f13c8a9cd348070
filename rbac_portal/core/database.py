"""MongoDB client factory, collection names and index bootstrap."""
from __future__ import annotations
import logging

from pymongo import ASCENDING, DESCENDING, IndexModel, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


class Collections:
    """Collection names in the portal database."""
    USERS = "users"
    AUDIT_LOGS = "audit_logs"
    PASSWORD_RESETS = "password_resets"


def create_mongo_client(cfg) -> MongoClient:
    """Build a client with bounded timeouts.

    The client connects lazily, so building it never blocks application
    start-up when the server is down; the first operation fails instead
    (surfaced as ServiceUnavailable by the stores).
    """
    return MongoClient(
        cfg.mongodb_uri,
        serverSelectionTimeoutMS=cfg.mongo_server_selection_timeout_ms,
        connectTimeoutMS=cfg.mongo_connect_timeout_ms,
        socketTimeoutMS=cfg.mongo_socket_timeout_ms,
        maxPoolSize=cfg.mongo_max_pool_size,
        retryWrites=True,
        retryReads=True,
        tz_aware=True,
        connect=False,
    )


def ensure_indexes(db: Database, audit_retention_seconds: int = 63072000) -> bool:
    """Create the indexes the stores rely on.

    Returns False (and logs) when the database is unreachable so that the
    application can still start in demo mode.
    """
    try:
        db[Collections.USERS].create_indexes([
            IndexModel([("email", ASCENDING)], unique=True, name="email_unique"),
            IndexModel([("role", ASCENDING)], name="role"),
        ])
        db[Collections.AUDIT_LOGS].create_indexes([
            IndexModel([("timestamp", DESCENDING)], name="timestamp_desc"),
            IndexModel([("actor_id", ASCENDING), ("timestamp", DESCENDING)], name="actor_timestamp"),
            IndexModel([("target_user_id", ASCENDING), ("timestamp", DESCENDING)], name="target_timestamp"),
            IndexModel([("action", ASCENDING), ("timestamp", DESCENDING)], name="action_timestamp"),
            IndexModel(
                [("action", ASCENDING), ("actor_id", ASCENDING), ("timestamp", DESCENDING)],
                name="action_actor_timestamp",
            ),
            # Retention is an external policy; the TTL index only enforces it.
            IndexModel(
                [("timestamp", ASCENDING)],
                expireAfterSeconds=audit_retention_seconds,
                name="retention_ttl",
            ),
        ])
        db[Collections.PASSWORD_RESETS].create_indexes([
            IndexModel([("token", ASCENDING)], unique=True, name="token_unique"),
            IndexModel([("expires_at", ASCENDING)], expireAfterSeconds=0, name="expiry_ttl"),
        ])
    except PyMongoError as exc:
        logger.error("Failed to create MongoDB indexes: %s", exc)
        return False
    logger.info("MongoDB indexes ensured on database '%s'", db.name)
    return True


def ping(db: Database) -> bool:
    """Readiness probe: True when the server answers a ping."""
    try:
        db.client.admin.command("ping")
        return True
    except PyMongoError as exc:
        logger.warning("MongoDB ping failed: %s", exc)
        return False
