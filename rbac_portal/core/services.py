"""Wiring of stores and services for one application instance."""
from __future__ import annotations
import datetime
import logging
from dataclasses import dataclass
from typing import Optional

from pymongo.database import Database

from .accounts import AccountService
from .audit import AuditSink
from .notifications import Mailer, NotificationChannel, NotificationDispatcher, build_channels
from .password_reset import InMemoryResetTokenStore, MongoResetTokenStore, PasswordResetService
from .role_guard import RoleMutationGuard
from .users import UserStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    db: Database
    users: UserStore
    audit: AuditSink
    guard: RoleMutationGuard
    accounts: AccountService
    resets: PasswordResetService
    dispatcher: NotificationDispatcher
    mailer: Mailer
    dev_token_store: Optional[InMemoryResetTokenStore] = None

    def shutdown(self) -> None:
        self.dispatcher.shutdown(wait=False)


def build_services(
    cfg,
    db: Database,
    *,
    channels: Optional[list[NotificationChannel]] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    mailer: Optional[Mailer] = None,
) -> Services:
    """Build every service from configuration.

    ``channels``/``dispatcher``/``mailer`` override the configured ones
    (tests inject recording doubles here).
    """
    mailer = mailer or Mailer.from_config(cfg)
    if dispatcher is None:
        if channels is None:
            channels = build_channels(cfg, mailer)
        dispatcher = NotificationDispatcher(channels, max_workers=cfg.notification_workers)

    users = UserStore(db)
    audit = AuditSink(db, dispatcher=dispatcher, signing_key=cfg.audit_log_signing_key)

    dev_token_store = InMemoryResetTokenStore() if cfg.dev_token_fallback else None
    if dev_token_store is not None:
        logger.warning("Development reset-token fallback enabled (tokens are not persisted)")

    resets = PasswordResetService(
        users,
        MongoResetTokenStore(db),
        audit,
        mailer,
        base_url=cfg.app_base_url,
        ttl=datetime.timedelta(seconds=cfg.reset_token_ttl_seconds),
        min_password_length=cfg.min_password_length,
        fallback_store=dev_token_store,
    )

    return Services(
        db=db,
        users=users,
        audit=audit,
        guard=RoleMutationGuard(users, audit),
        accounts=AccountService(
            users,
            audit,
            admin_registration_key=cfg.admin_registration_key,
            min_password_length=cfg.min_password_length,
        ),
        resets=resets,
        dispatcher=dispatcher,
        mailer=mailer,
        dev_token_store=dev_token_store,
    )
