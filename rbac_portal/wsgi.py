"""Application instance for Gunicorn (``gunicorn rbac_portal.wsgi:app``)."""
import logging
import os

from rbac_portal.flask_app import create_app

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

app = create_app()


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=True)
