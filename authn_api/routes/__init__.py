"""
API Routes Package

This package contains route handlers organized by feature:
- registration.py: registration ceremony begin/finish
- login.py: login ceremony begin/finish
- health.py: probes and status
"""

from authn_api.routes.registration import router as registration_router
from authn_api.routes.login import router as login_router
from authn_api.routes.health import router as health_router
from authn_api.routes.health import PROBE_PATHS

__all__ = [
    "registration_router",
    "login_router",
    "health_router",
    "PROBE_PATHS",
]
