import pytest
import pytest_asyncio
from decimal import Decimal

from ordering.core.db import init_db, close_db


@pytest_asyncio.fixture
async def db(tmp_path):
    """Fresh file-backed SQLite database per test; separate connections behave like separate clients."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
    yield
    await close_db()


@pytest.fixture
def items():
    return [{"product_id": "P1", "product_name": "Widget", "quantity": 2, "unit_price": Decimal("10.00")}]
