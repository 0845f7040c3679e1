from typing import Optional
from pydantic import BaseModel


class AuditLogResponse(BaseModel):
    id: str
    budget_id: str
    action: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    changed_by: str
    reason: Optional[str] = None
    request_id: Optional[str] = None
    created_at: str

    model_config = {"from_attributes": True}
