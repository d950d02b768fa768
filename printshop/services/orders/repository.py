"""
Order data access repository.

Reads used before a status or payment write lock the order row so that
concurrent confirmations of the same order serialize. The repository
flushes but never commits.
"""

import uuid
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from printshop.core.logging import get_logger
from printshop.database.models.order import Order, OrderStatusHistory
from printshop.services.orders.enums import OrderStatus
from printshop.services.orders.exceptions import OrderServiceError

logger = get_logger(__name__)


class OrderRepository:
    """
    Repository for order data access operations.

    Items are loaded eagerly with every order; status history is loaded on
    request only.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_order(self, order_id: uuid.UUID) -> Optional[Order]:
        stmt = select(Order).where(Order.id == order_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_order_for_update(self, order_id: uuid.UUID) -> Optional[Order]:
        """
        Load and lock an order row for the rest of the transaction.

        Args:
            order_id: Order identifier

        Returns:
            Locked order with fresh column values, or None
        """
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .with_for_update(of=Order)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_number(self, order_number: str) -> Optional[Order]:
        stmt = select(Order).where(Order.order_number == order_number)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def order_number_exists(self, order_number: str) -> bool:
        stmt = (
            select(func.count())
            .select_from(Order)
            .where(Order.order_number == order_number)
        )
        result = await self.session.execute(stmt)
        return (result.scalar_one() or 0) > 0

    async def add_order(self, order: Order) -> Order:
        """
        Persist a new order with its items.

        Raises:
            OrderServiceError: If the insert violates a constraint
        """
        try:
            self.session.add(order)
            await self.session.flush()
        except IntegrityError as e:
            logger.error(
                "Order insert violated a constraint",
                order_number=order.order_number,
                error=str(e),
            )
            raise OrderServiceError(
                "Failed to create order",
                order_number=order.order_number,
            ) from e

        logger.debug(
            "Order persisted",
            order_id=str(order.id),
            order_number=order.order_number,
            item_count=len(order.items),
        )
        return order

    async def add_history(
        self,
        order_id: uuid.UUID,
        status: OrderStatus,
        notes: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> OrderStatusHistory:
        entry = OrderStatusHistory(
            order_id=order_id,
            status=status,
            notes=notes,
            actor=actor,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def get_history(self, order_id: uuid.UUID) -> list[OrderStatusHistory]:
        stmt = (
            select(OrderStatusHistory)
            .where(OrderStatusHistory.order_id == order_id)
            .order_by(OrderStatusHistory.created_at.asc(), OrderStatusHistory.id.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_user_orders(
        self,
        user_id: uuid.UUID,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Order], int]:
        """
        Page through a user's orders, newest first.

        Returns:
            (orders, total count)

        Raises:
            OrderServiceError: If the query fails
        """
        try:
            count_stmt = (
                select(func.count()).select_from(Order).where(Order.user_id == user_id)
            )
            total = (await self.session.execute(count_stmt)).scalar_one()

            stmt = (
                select(Order)
                .where(Order.user_id == user_id)
                .order_by(Order.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            result = await self.session.execute(stmt)
            return list(result.scalars().all()), total
        except SQLAlchemyError as e:
            logger.error(
                "Failed to list user orders",
                user_id=str(user_id),
                error=str(e),
            )
            raise OrderServiceError(
                "Failed to list orders",
                user_id=str(user_id),
            ) from e
