# api/__init__.py
from api.server import (
    create_app,
    make_admin_check,
    ServerConfig,
)

__all__ = [
    "create_app",
    "make_admin_check",
    "ServerConfig",
]
