"""Gunicorn configuration.

Each worker builds its own MongoClient and notification thread pool when it
imports ``rbac_portal.wsgi`` (no preload), so nothing is shared across forks.
The admin role-change lock is per process; see DESIGN.md.
"""
import os

bind = os.environ.get("GUNICORN_BIND", "0.0.0.0:5000")
workers = int(os.environ.get("GUNICORN_WORKERS", "2"))
threads = int(os.environ.get("GUNICORN_THREADS", "4"))
timeout = int(os.environ.get("GUNICORN_TIMEOUT", "30"))
preload_app = False


def post_fork(server, worker):
    """Called just after a worker has been forked."""
    demo_mode = os.environ.get("DEMO_MODE", "false").lower() == "true"
    if demo_mode:
        worker.log.warning("DEMO_MODE=true - generated secrets, not for production")
    if not os.environ.get("SMTP_HOST"):
        worker.log.info("SMTP_HOST not set; e-mails are logged instead of sent")


def worker_exit(server, worker):
    """Stop the notification pool without waiting for in-flight alerts."""
    app = getattr(worker, "wsgi", None)
    services = getattr(app, "extensions", {}).get("rbac_portal") if app is not None else None
    if services is not None:
        services.shutdown()
        worker.log.info("Notification dispatcher shut down")
