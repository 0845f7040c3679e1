import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    Boolean,
    Numeric,
    DateTime,
    Text,
    ForeignKey,
    CheckConstraint,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from budgetdesk.database import Base

REQUEST_STATUSES = ("pending", "auto_approved", "approved", "rejected")


class SpendRequest(Base):
    __tablename__ = "spend_requests"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("customers.id"), nullable=False
    )
    supplier: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    # As submitted; amount/currency above are in the linked budget currency
    requested_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2))
    requested_currency: Mapped[Optional[str]] = mapped_column(String(3))
    budget_category: Mapped[str] = mapped_column(String(100), nullable=False)
    sub_category: Mapped[Optional[str]] = mapped_column(String(100))
    fiscal_period: Mapped[str] = mapped_column(String(20), nullable=False)
    budget_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("budgets.id", ondelete="SET NULL")
    )
    status: Mapped[str] = mapped_column(String(20), default="pending")
    auto_approved: Mapped[bool] = mapped_column(Boolean, default=False)
    approval_reason: Mapped[Optional[str]] = mapped_column(Text)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    created_by_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
    decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_request_amount_positive"),
        CheckConstraint(
            "status IN ('pending', 'auto_approved', 'approved', 'rejected')",
            name="chk_request_status",
        ),
        Index("idx_requests_customer", "customer_id"),
        Index("idx_requests_budget_status", "budget_id", "status", "created_at"),
        Index("idx_requests_creator", "created_by_id"),
    )
