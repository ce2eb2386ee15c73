"""API middleware: request-signature auth, CORS."""

from doauth.api.middleware.auth import CallerContext
from doauth.api.middleware.cors import setup_cors

__all__ = ["CallerContext", "setup_cors"]
