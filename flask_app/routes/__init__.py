# flask_app/routes/__init__.py
"""
Application routes package
"""

from .auth import register_auth_routes
from .vista import register_vista_routes


def init_routes(app):
    """Initialize all application routes"""
    register_auth_routes(app)
    register_vista_routes(app)
