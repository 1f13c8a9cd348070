"""Notification channels for high-risk admin actions.

Each channel exposes ``send(alert) -> bool``. The dispatcher runs every
channel on a background executor; one channel failing never affects the
others, and nothing propagates back to the code that recorded the action.
"""
from __future__ import annotations
import concurrent.futures
import datetime
import json
import logging
import smtplib
from dataclasses import dataclass, field
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Iterable, Optional

import requests

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HighRiskAlert:
    """Message handed to every channel."""
    action: str
    actor_id: str
    target_user_id: str
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime.datetime = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )
    actor_label: str = ""
    target_label: str = ""

    @property
    def subject(self) -> str:
        return f"High-Risk Admin Action: {self.action}"

    def as_text(self) -> str:
        lines = [
            "HIGH-RISK ADMINISTRATIVE ACTION ALERT",
            "",
            f"Action: {self.action}",
            f"Performed by: {self.actor_label or self.actor_id}",
            f"Target user: {self.target_label or self.target_user_id}",
            f"Timestamp: {self.timestamp.isoformat()}",
        ]
        if self.details:
            rendered = ", ".join(f"{key}: {value}" for key, value in self.details.items())
            lines.append(f"Details: {rendered}")
        lines += [
            "",
            "This action has been logged in the audit trail. "
            "Please review the admin dashboard for more details.",
        ]
        return "\n".join(lines)

    def as_slack_payload(self) -> dict[str, Any]:
        """Slack Block Kit message."""
        fields = [
            {"type": "mrkdwn", "text": f"*Action:* {self.action}"},
            {"type": "mrkdwn", "text": f"*Performed by:* {self.actor_label or self.actor_id}"},
            {"type": "mrkdwn", "text": f"*Target User:* {self.target_label or self.target_user_id}"},
            {"type": "mrkdwn", "text": f"*Timestamp:* {self.timestamp.isoformat()}"},
        ]
        blocks: list[dict[str, Any]] = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": "High-Risk Admin Action Alert"},
            },
            {"type": "section", "fields": fields},
        ]
        if self.details:
            blocks.append({
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*{key}:* {value}"}
                    for key, value in self.details.items()
                ],
            })
        blocks.append({
            "type": "context",
            "elements": [{
                "type": "mrkdwn",
                "text": "This action has been logged in the audit trail.",
            }],
        })
        return {"text": self.subject, "blocks": blocks}


# ─────────────────────────────────────────────────────────────────────────────
# Mail transport (shared by alert e-mails and password-reset e-mails)
# ─────────────────────────────────────────────────────────────────────────────
class Mailer:
    """SMTP sender; logs the message instead when no SMTP host is configured."""

    def __init__(
        self,
        host: str = "",
        port: int = 587,
        user: str = "",
        password: str = "",
        sender: str = "noreply@rbac-portal.local",
        timeout: int = 5,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender
        self.timeout = timeout

    @classmethod
    def from_config(cls, cfg) -> "Mailer":
        return cls(
            host=cfg.smtp_host,
            port=cfg.smtp_port,
            user=cfg.smtp_user,
            password=cfg.smtp_password,
            sender=cfg.smtp_from,
            timeout=cfg.notification_timeout,
        )

    @property
    def configured(self) -> bool:
        return bool(self.host)

    def send(self, to: list[str], subject: str, text: str, html: Optional[str] = None) -> bool:
        if not to:
            logger.warning("No recipients for e-mail '%s'; skipping", subject)
            return False

        if not self.configured:
            logger.info("[mail:console] To=%s Subject=%s\n%s", ", ".join(to), subject, text)
            return True

        msg = MIMEMultipart("alternative")
        msg["From"] = self.sender
        msg["To"] = ", ".join(to)
        msg["Subject"] = subject
        msg.attach(MIMEText(text, "plain"))
        if html:
            msg.attach(MIMEText(html, "html"))

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls()
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send e-mail '%s' via %s:%s: %s", subject, self.host, self.port, exc)
            return False

        logger.info("E-mail '%s' sent to %d recipient(s)", subject, len(to))
        return True


# ─────────────────────────────────────────────────────────────────────────────
# Channels
# ─────────────────────────────────────────────────────────────────────────────
class NotificationChannel:
    """Base class for alert channels."""

    name = "channel"

    def send(self, alert: HighRiskAlert) -> bool:
        raise NotImplementedError


class EmailChannel(NotificationChannel):
    name = "email"

    def __init__(self, mailer: Mailer, recipients: list[str]):
        self.mailer = mailer
        self.recipients = list(recipients)

    def send(self, alert: HighRiskAlert) -> bool:
        return self.mailer.send(self.recipients, alert.subject, alert.as_text())


class SlackWebhookChannel(NotificationChannel):
    name = "slack"

    def __init__(self, webhook_url: str, timeout: int = 5):
        self.webhook_url = webhook_url
        self.timeout = timeout

    def send(self, alert: HighRiskAlert) -> bool:
        try:
            response = requests.post(
                self.webhook_url,
                data=json.dumps(alert.as_slack_payload()),
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.error("Slack notification failed for %s: %s", alert.action, exc)
            return False
        logger.info("Slack notification sent for action: %s", alert.action)
        return True


def build_channels(cfg, mailer: Mailer) -> list[NotificationChannel]:
    """Channels enabled by configuration (zero or more)."""
    channels: list[NotificationChannel] = []
    if cfg.admin_alert_emails:
        channels.append(EmailChannel(mailer, cfg.admin_alert_emails))
    if cfg.slack_webhook_url:
        channels.append(SlackWebhookChannel(cfg.slack_webhook_url, timeout=cfg.notification_timeout))
    if not channels:
        logger.info("No notification channels configured; high-risk alerts are audit-only")
    return channels


# ─────────────────────────────────────────────────────────────────────────────
# Dispatcher
# ─────────────────────────────────────────────────────────────────────────────
class NotificationDispatcher:
    """Fire-and-forget fan-out: one attempt per channel per alert, no retries."""

    def __init__(
        self,
        channels: Iterable[NotificationChannel],
        executor: Optional[concurrent.futures.Executor] = None,
        max_workers: int = 4,
    ):
        self.channels = list(channels)
        self._executor = executor or concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="notify"
        )

    def dispatch(self, alert: HighRiskAlert) -> list[concurrent.futures.Future]:
        """Submit the alert to every channel and return immediately.

        The returned futures resolve to each channel's success flag; callers
        on the request path ignore them.
        """
        futures = []
        for channel in self.channels:
            try:
                futures.append(self._executor.submit(self._send_isolated, channel, alert))
            except RuntimeError as exc:
                # Executor already shut down (interpreter exit).
                logger.error("Could not schedule %s notification: %s", channel.name, exc)
        return futures

    @staticmethod
    def _send_isolated(channel: NotificationChannel, alert: HighRiskAlert) -> bool:
        try:
            return bool(channel.send(alert))
        except Exception as exc:
            logger.error("Notification channel '%s' raised: %s", channel.name, exc, exc_info=True)
            return False

    def shutdown(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait)
