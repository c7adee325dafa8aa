"""Shared schema exports."""

from .account import SessionClaims

__all__ = [
    "SessionClaims",
]
