"""
Shared fixtures: in-memory Motor database, lifecycle service, tenant contexts.
"""

import pytest
from mongomock_motor import AsyncMongoMockClient

from models import TenantContext
from services.document_lifecycle import DocumentLifecycleService

TEST_YEAR = 2026


@pytest.fixture
def db():
    return AsyncMongoMockClient()["crm_documents_test"]


@pytest.fixture
async def service(db):
    service = DocumentLifecycleService(db, year_provider=lambda: TEST_YEAR)
    await service.ensure_indexes()
    return service


@pytest.fixture
def ctx():
    return TenantContext(tenant_id="tenant-a", user_id="user-1")


@pytest.fixture
def other_ctx():
    return TenantContext(tenant_id="tenant-b", user_id="user-9")


@pytest.fixture
def scenario_line():
    """2 x 100, 10% discount, 18% tax -> 200 / 20 / 32.4 / 212.4"""
    return {
        "product_name": "Consulting day",
        "quantity": 2,
        "unit_price": 100,
        "discount_percent": 10,
        "tax_percent": 18,
    }
