"""Core Business Logic Module

This module provides the business logic of the portal, independent of the
HTTP layer.

Module Structure:
    - models.py         : User / AuditLogEntry / PasswordResetToken records, roles, audit actions
    - exceptions.py     : Error taxonomy (kind + HTTP status)
    - database.py       : MongoDB client factory, collection names, indexes
    - users.py          : User store (pymongo)
    - role_guard.py     : Role-mutation guard (last-admin / self-demotion protection)
    - audit.py          : Audit sink, high-risk classification, signed entries, queries
    - notifications.py  : E-mail / Slack channels and the background dispatcher
    - password_reset.py : Reset-token stores and the reset service
    - accounts.py       : Registration, login, password change
    - validators.py     : Input validation
    - rbac.py           : Session helpers (Flask)
    - services.py       : Wiring of all of the above

Usage Pattern:
    These modules are NOT auto-imported; import explicitly when needed:
        from rbac_portal.core.services import build_services
        from rbac_portal.core.audit import is_high_risk
"""
