import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from budgetdesk.database import get_db
from budgetdesk.main import app
from budgetdesk.services.auth_service import create_access_token

CUSTOMER_ID = "c0000000-0000-0000-0000-000000000001"
FPA_USER_ID = "a0000000-0000-0000-0000-000000000102"
BUSINESS_USER_ID = "a0000000-0000-0000-0000-000000000103"


def make_token(role: str = "fpa_admin", user_id: str = FPA_USER_ID, customer_id: str = CUSTOMER_ID):
    return create_access_token(
        user_id=user_id,
        customer_id=customer_id,
        role=role,
        email=f"{role}@acme.com",
        name=role.replace("_", " ").title(),
    )


@pytest.fixture
def fpa_headers():
    return {"Authorization": f"Bearer {make_token('fpa_admin')}"}


@pytest.fixture
def user_headers():
    token = make_token("business_user", user_id=BUSINESS_USER_ID)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def db_session() -> AsyncMock:
    session = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
async def client(db_session):
    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def customer_id():
    return uuid.UUID(CUSTOMER_ID)
