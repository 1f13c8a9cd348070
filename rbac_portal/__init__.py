"""RBAC Portal Flask Application Package.

To use the Flask app:
    from rbac_portal.flask_app import create_app

To use the role/audit services without Flask:
    from rbac_portal.core.services import build_services
"""
# Note: flask_app is not imported here so that CLI scripts can use
# rbac_portal.core without building an application.
