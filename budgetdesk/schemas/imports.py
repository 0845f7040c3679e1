from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field


class ImportRequest(BaseModel):
    source_type: Literal["excel", "csv", "google_sheets", "api"] = "api"
    file_name: Optional[str] = Field(None, max_length=255)
    rows: List[dict[str, Any]] = Field(..., min_length=1, max_length=10_000)


class ImportResponse(BaseModel):
    success: bool
    import_id: Optional[str] = None
    total_rows: int
    success_count: int
    failure_count: int
    created_count: int = 0
    updated_count: int = 0
    errors: List[dict] = []
    message: Optional[str] = None


class ImportHistoryResponse(BaseModel):
    id: str
    source_type: str
    file_name: Optional[str] = None
    total_rows: int
    success_count: int
    failure_count: int
    errors: Optional[List[dict]] = None
    status: str
    imported_by_id: str
    created_at: str
    completed_at: Optional[str] = None


class SyncRequest(BaseModel):
    source_type: Literal["google_sheets", "sync", "excel", "csv", "api"] = "sync"
    rows: List[dict[str, Any]] = Field(default_factory=list, max_length=10_000)


class SyncResponse(BaseModel):
    sync_id: str
    status: str
    total_rows: int
    created: int
    updated: int
    unchanged: int
    soft_deleted: int
    errors: List[dict] = []
    duration_ms: int


class SyncHistoryResponse(BaseModel):
    id: str
    sync_id: str
    source_type: str
    status: str
    triggered_by: str
    started_at: str
    ended_at: Optional[str] = None
    duration_ms: int
    total_rows: int
    created_count: int
    updated_count: int
    unchanged_count: int
    soft_deleted_count: int
    error_count: int
    errors: Optional[List[dict]] = None
