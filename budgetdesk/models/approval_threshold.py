"""
Per-customer auto-approval threshold overrides.

A row here wins over AUTO_APPROVAL_THRESHOLDS from settings for the same
department; departments with no row fall back to settings, then to
DEFAULT_AUTO_APPROVAL_THRESHOLD.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    Numeric,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from budgetdesk.database import Base


class ApprovalThreshold(Base):
    __tablename__ = "approval_thresholds"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("customers.id"), nullable=False
    )
    department: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    updated_by: Mapped[Optional[str]] = mapped_column(String(255))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("customer_id", "department", name="uq_threshold_customer_dept"),
        CheckConstraint("amount >= 0", name="chk_threshold_non_negative"),
    )
