import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    Numeric,
    DateTime,
    ForeignKey,
    CheckConstraint,
    Index,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from budgetdesk.database import Base

BUDGET_SOURCES = ("manual", "excel", "csv", "google_sheets", "sync", "api")


class Budget(Base):
    __tablename__ = "budgets"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("customers.id"), nullable=False
    )
    department: Mapped[str] = mapped_column(String(100), nullable=False)
    sub_category: Mapped[Optional[str]] = mapped_column(String(100))
    fiscal_period: Mapped[str] = mapped_column(String(20), nullable=False)
    budgeted_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    source: Mapped[str] = mapped_column(String(20), default="manual")
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    utilization: Mapped[Optional["BudgetUtilization"]] = relationship(
        "BudgetUtilization",
        back_populates="budget",
        uselist=False,
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        # One budget per natural key; NULL sub_category counts as a value
        Index(
            "uq_budget_customer_dept_sub_period",
            "customer_id",
            "department",
            text("coalesce(sub_category, '')"),
            "fiscal_period",
            unique=True,
        ),
        CheckConstraint("budgeted_amount >= 0", name="chk_budget_non_negative"),
        CheckConstraint(
            "source IN ('manual', 'excel', 'csv', 'google_sheets', 'sync', 'api')",
            name="chk_budget_source",
        ),
        Index("idx_budgets_lookup", "customer_id", "department", "fiscal_period"),
        Index("idx_budgets_deleted", "deleted_at"),
    )


class BudgetUtilization(Base):
    __tablename__ = "budget_utilizations"

    budget_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("budgets.id", ondelete="CASCADE"),
        primary_key=True,
    )
    committed_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0")
    )
    reserved_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    budget: Mapped["Budget"] = relationship("Budget", back_populates="utilization")

    __table_args__ = (
        CheckConstraint("committed_amount >= 0", name="chk_util_committed"),
        CheckConstraint("reserved_amount >= 0", name="chk_util_reserved"),
    )
