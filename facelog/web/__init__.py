# facelog/web/__init__.py
"""
Web module - read-only Flask dashboard API.
"""
from .server import create_app, run_server, init_dashboard, dashboard_bp

__all__ = [
    'create_app',
    'run_server',
    'init_dashboard',
    'dashboard_bp',
]
