"""
Mint a development access token for one of the seeded users.
Run from the project root: python -m scripts.mint_token fpa@acme.com
"""
import argparse
import asyncio
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select
from budgetdesk.database import AsyncSessionLocal
from budgetdesk.models.user import User
from budgetdesk.services.auth_service import create_access_token


async def mint(email: str, expires_minutes: int) -> int:
    async with AsyncSessionLocal() as db:
        result = await db.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()

    if not user:
        print(f"No user with email {email}", file=sys.stderr)
        return 1
    if not user.is_active:
        print(f"User {email} is inactive", file=sys.stderr)
        return 1

    token = create_access_token(
        user_id=str(user.id),
        customer_id=str(user.customer_id),
        role=user.role,
        email=user.email,
        name=user.name,
        expires_minutes=expires_minutes,
    )
    print(token)
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Mint a BudgetDesk access token")
    parser.add_argument("email")
    parser.add_argument("--expires", type=int, default=60, help="Lifetime in minutes")
    args = parser.parse_args()
    sys.exit(asyncio.run(mint(args.email, args.expires)))
