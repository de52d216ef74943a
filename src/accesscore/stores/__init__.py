"""Reference implementations of the store and audit-sink interfaces."""

from .memory import InMemoryAuditSink, InMemoryResourceStore, InMemoryRoleStore

__all__ = ["InMemoryAuditSink", "InMemoryResourceStore", "InMemoryRoleStore"]
