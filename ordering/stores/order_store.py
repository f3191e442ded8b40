from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ordering.models.order import Order


class OrderStore:
    """Orders and their line items, looked up by id or by idempotency token."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by_id(self, order_id: UUID) -> Optional[Order]:
        return await self.session.get(Order, order_id)

    async def find_by_idempotency_token(self, token: str) -> Optional[Order]:
        result = await self.session.execute(select(Order).where(Order.idempotency_key == token))
        return result.scalar_one_or_none()

    async def find_by_order_number(self, order_number: str) -> Optional[Order]:
        result = await self.session.execute(select(Order).where(Order.order_number == order_number))
        return result.scalar_one_or_none()

    async def list_by_user(self, user_id: str, limit: int = 50) -> List[Order]:
        result = await self.session.execute(
            select(Order)
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def save(self, order: Order) -> Order:
        """
        Stages the order in the current transaction and flushes it, so unique
        and version conflicts surface here rather than at commit.
        """
        self.session.add(order)
        await self.session.flush()
        return order
