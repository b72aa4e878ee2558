"""Audit logging for pipeline steps"""

from .service import AuditStatus, AuditStep, log_processing_step

__all__ = ["AuditStatus", "AuditStep", "log_processing_step"]
