"""Issue management core for civic problem reports."""

from .api import app, create_app

__all__ = ["app", "create_app"]
