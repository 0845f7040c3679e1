"""
Seed script: creates a demo customer, users, budgets and a threshold override.
Run from the project root: python -m scripts.seed
"""
import asyncio
import sys
import os
import uuid
from decimal import Decimal

# Ensure the project root is on sys.path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select
from budgetdesk.database import AsyncSessionLocal
from budgetdesk.models.customer import Customer
from budgetdesk.models.user import User
from budgetdesk.services import budget_service, ledger_service, threshold_service
from budgetdesk.services.audit_service import SYSTEM_ACTOR

# ---------- Fixed UUIDs ----------

CUSTOMER_ACME_ID = uuid.UUID("c0000000-0000-0000-0000-000000000001")

USER_ADMIN_ID = uuid.UUID("a0000000-0000-0000-0000-000000000101")
USER_FPA_ID = uuid.UUID("a0000000-0000-0000-0000-000000000102")
USER_ENG_ID = uuid.UUID("a0000000-0000-0000-0000-000000000103")
USER_SALES_ID = uuid.UUID("a0000000-0000-0000-0000-000000000104")

FISCAL_PERIOD = "FY2026-Q1"

# (department, sub_category, amount, committed)
BUDGETS = [
    ("Engineering", "Software", Decimal("100000.00"), Decimal("20000.00")),
    ("Engineering", "Hardware", Decimal("50000.00"), Decimal("46000.00")),
    ("Sales", "Travel", Decimal("30000.00"), Decimal("5000.00")),
    ("Marketing", "Events", Decimal("40000.00"), Decimal("0.00")),
    ("Finance", None, Decimal("20000.00"), Decimal("3000.00")),
]


async def seed():
    async with AsyncSessionLocal() as db:
        result = await db.execute(select(Customer).where(Customer.id == CUSTOMER_ACME_ID))
        if result.scalar_one_or_none():
            print("Seed data already exists. Skipping.")
            return

        db.add(Customer(id=CUSTOMER_ACME_ID, name="Acme Corporation", domain="acme.com"))
        await db.flush()

        users = [
            User(id=USER_ADMIN_ID, customer_id=CUSTOMER_ACME_ID, email="admin@acme.com",
                 name="System Admin", role="admin"),
            User(id=USER_FPA_ID, customer_id=CUSTOMER_ACME_ID, email="fpa@acme.com",
                 name="Carol Davis", role="fpa_admin"),
            User(id=USER_ENG_ID, customer_id=CUSTOMER_ACME_ID, email="eng@acme.com",
                 name="Alice Johnson", role="business_user"),
            User(id=USER_SALES_ID, customer_id=CUSTOMER_ACME_ID, email="sales@acme.com",
                 name="Henry Anderson", role="business_user"),
        ]
        db.add_all(users)
        await db.flush()

        for department, sub_category, amount, committed in BUDGETS:
            budget = await budget_service.create_budget(
                db,
                CUSTOMER_ACME_ID,
                department,
                sub_category,
                FISCAL_PERIOD,
                amount,
                "USD",
                actor=SYSTEM_ACTOR,
                reason="Seed data",
            )
            if committed:
                await ledger_service.commit_budget(
                    db,
                    budget.id,
                    committed,
                    was_reserved=False,
                    actor=SYSTEM_ACTOR,
                    reason="Seed data",
                )

        await threshold_service.set_threshold(
            db, CUSTOMER_ACME_ID, "Marketing", Decimal("2500.00"), updated_by=SYSTEM_ACTOR
        )

        await db.commit()
        print("Seed data inserted successfully!")
        print("  Customers: 1")
        print(f"  Users: {len(users)}")
        print(f"  Budgets: {len(BUDGETS)} ({FISCAL_PERIOD})")
        print("  Threshold overrides: 1")


if __name__ == "__main__":
    asyncio.run(seed())
