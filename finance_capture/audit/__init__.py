"""Audit logging package."""

from finance_capture.audit.logger import AuditLogger, create_correlation_id

__all__ = ["AuditLogger", "create_correlation_id"]
