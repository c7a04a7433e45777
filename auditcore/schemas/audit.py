"""Audit log schemas."""
from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from auditcore.models.audit import OperationKind


class AuditLogRead(BaseModel):
    id: int
    user_id: str | None = None
    user_email: str | None = None
    user_name: str | None = None
    operation_type: OperationKind
    table_name: str
    record_id: str
    old_values: Any = None
    new_values: Any = None
    changed_fields: list[str] = Field(default_factory=list)
    ip_address: str | None = None
    user_agent: str | None = None
    request_method: str | None = None
    request_url: str | None = None
    request_body: Any = None
    response_status: int | None = None
    execution_time_ms: int | None = None
    error_message: str | None = None
    metadata: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("context_metadata", "metadata")
    )
    browser_info: dict[str, Any] | None = None
    session_id: str | None = None
    transaction_id: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="after")
    def _browser_from_metadata(self) -> "AuditLogRead":
        if self.browser_info is None and self.metadata:
            self.browser_info = self.metadata.get("browser_info")
        return self


class AuditLogPage(BaseModel):
    items: list[AuditLogRead]
    total: int
    limit: int
    offset: int


class OperationCount(BaseModel):
    operation_type: str
    count: int


class TableCount(BaseModel):
    table_name: str
    count: int


class UserCount(BaseModel):
    user_email: str | None
    user_name: str | None
    count: int


class DailyCount(BaseModel):
    date: str
    count: int


class AuditLogStats(BaseModel):
    operations: list[OperationCount]
    tables: list[TableCount]
    users: list[UserCount]
    daily_activity: list[DailyCount]


class AuditLogCreate(BaseModel):
    """Client-initiated audit event, e.g. a front-end page view or download."""

    operation_type: OperationKind
    table_name: str = Field(..., min_length=1, max_length=100)
    record_id: str | None = Field(default=None, max_length=255)
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None


class AuditLogCreated(BaseModel):
    id: int


class ExportResultRead(BaseModel):
    filename: str
    filepath: str
    date_dir: str
    record_count: int
    export_date: datetime


class ExportFileRead(BaseModel):
    filename: str
    size: int
    created: datetime
    modified: datetime


class PruneResult(BaseModel):
    removed: int
    retention_days: int


class CombinedContent(BaseModel):
    content: str
    lines: int | None = None
