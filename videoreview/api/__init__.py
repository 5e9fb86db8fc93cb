"""
API package for VideoReview
"""

from .app import create_app
from .middleware import api_key_middleware

__all__ = [
    "create_app",
    "api_key_middleware",
]
