# api/__init__.py
from api.context import AppContext
from api.server import create_app

__all__ = [
    "AppContext",
    "create_app",
]
