"""Persistence for stock recommendations.

Every write goes through a single UPDATE statement so status, price and the
realised fields of a stock always change together.
"""

import logging
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.stock import StockRecommendation

logger = logging.getLogger(__name__)


class StockRepository:
    """Async data access for the stock_recommendations table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def find_all(self) -> list[StockRecommendation]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(StockRecommendation).order_by(StockRecommendation.date_of_rec.desc())
            )
            return list(result.scalars().all())

    async def get(self, stock_id: str) -> StockRecommendation | None:
        async with self._session_factory() as session:
            return await session.get(StockRecommendation, stock_id)

    async def update(self, stock_id: str, **fields) -> StockRecommendation | None:
        """Apply all fields in one transaction and return the fresh row."""
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(StockRecommendation)
                    .where(StockRecommendation.id == stock_id)
                    .values(**fields)
                )
            return await session.get(StockRecommendation, stock_id, populate_existing=True)

    async def update_where_status(self, stock_id: str, expected_status: str, **fields) -> bool:
        """Apply fields only while the stock still has expected_status.

        Returns False when a concurrent write moved the stock first.
        """
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(StockRecommendation)
                    .where(
                        StockRecommendation.id == stock_id,
                        StockRecommendation.status == expected_status,
                    )
                    .values(**fields)
                )
        return result.rowcount > 0

    async def find_by_status_exited_before(
        self, status: str, exited_before: datetime
    ) -> list[StockRecommendation]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(StockRecommendation).where(
                    StockRecommendation.status == status,
                    StockRecommendation.exited_at.is_not(None),
                    StockRecommendation.exited_at <= exited_before,
                )
            )
            return list(result.scalars().all())

    # ---------- Read helpers for the API ----------

    @staticmethod
    def _filters(statuses: Iterable[str] | None, search: str | None) -> list:
        clauses = []
        if statuses:
            clauses.append(StockRecommendation.status.in_(list(statuses)))
        if search:
            pattern = f"%{search}%"
            clauses.append(
                or_(
                    StockRecommendation.symbol.ilike(pattern),
                    StockRecommendation.company_name.ilike(pattern),
                )
            )
        return clauses

    async def list_page(
        self,
        statuses: Iterable[str] | None = None,
        search: str | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> tuple[list[StockRecommendation], int]:
        """Page of stocks newest first, plus the total matching count."""
        clauses = self._filters(statuses, search)
        async with self._session_factory() as session:
            query = (
                select(StockRecommendation)
                .where(*clauses)
                .order_by(StockRecommendation.date_of_rec.desc())
                .offset(offset)
            )
            if limit is not None:
                query = query.limit(limit)
            rows = (await session.execute(query)).scalars().all()
            total = (
                await session.execute(
                    select(func.count()).select_from(StockRecommendation).where(*clauses)
                )
            ).scalar_one()
        return list(rows), total

    async def count(self, statuses: Iterable[str] | None = None) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(StockRecommendation)
                .where(*self._filters(statuses, None))
            )
            return result.scalar_one()

    async def find_with_realised(self, limit: int | None = None) -> list[StockRecommendation]:
        """Stocks carrying a frozen return, best first."""
        async with self._session_factory() as session:
            query = (
                select(StockRecommendation)
                .where(StockRecommendation.realised_pct.is_not(None))
                .order_by(StockRecommendation.realised_pct.desc())
            )
            if limit is not None:
                query = query.limit(limit)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def find_duplicate(
        self, symbol: str, company_name: str, day_start: datetime, day_end: datetime
    ) -> StockRecommendation | None:
        """Same call already imported for that recommendation day."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(StockRecommendation)
                .where(
                    StockRecommendation.symbol == symbol,
                    StockRecommendation.company_name == company_name,
                    StockRecommendation.date_of_rec >= day_start,
                    StockRecommendation.date_of_rec <= day_end,
                )
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def add(self, stock: StockRecommendation) -> StockRecommendation:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(stock)
        logger.debug("Created stock recommendation %s (%s)", stock.symbol, stock.id)
        return stock
