"""Tinker: module-based, idempotent machine provisioning."""

from .engine import prepare, provision
from .documents import DocumentLoader
from .profiles import ProfileLoader

__all__ = ["provision", "prepare", "DocumentLoader", "ProfileLoader"]
