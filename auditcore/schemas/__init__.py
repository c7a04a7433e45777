"""Schema package exports."""
from .audit import (
    AuditLogCreate,
    AuditLogCreated,
    AuditLogPage,
    AuditLogRead,
    AuditLogStats,
    CombinedContent,
    ExportFileRead,
    ExportResultRead,
    PruneResult,
)

__all__ = [
    "AuditLogCreate",
    "AuditLogCreated",
    "AuditLogPage",
    "AuditLogRead",
    "AuditLogStats",
    "CombinedContent",
    "ExportFileRead",
    "ExportResultRead",
    "PruneResult",
]
