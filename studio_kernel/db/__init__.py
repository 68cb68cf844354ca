"""Database infrastructure: declarative base and engine/session management."""

from studio_kernel.db.base import Base, TrackedBase, UUIDString

__all__ = ["Base", "TrackedBase", "UUIDString"]
