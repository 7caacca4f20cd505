"""SQLAlchemy-backed idempotency ledger for inbound carrier webhooks."""

import logging
from datetime import datetime

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from litestar_courierhub.contrib.sqlalchemy.models import InboundWebhookModel
from litestar_courierhub.models import utcnow

logger = logging.getLogger(__name__)


class SQLAlchemyInboundEventStore:
    """Inbound event store backed by SQLAlchemy.

    Implements the InboundEventStore protocol. The primary key on the
    idempotency key makes ``claim`` atomic across processes.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._session_factory = session_factory

    async def claim(self, key: str, carrier: str) -> bool:
        """Record a key. Returns False if it was already recorded."""
        async with self._session_factory() as session:
            session.add(
                InboundWebhookModel(
                    key=key, carrier=carrier, processed_at=utcnow()
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.debug("Inbound webhook key %s already claimed", key)
                return False
            return True

    async def release(self, key: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                delete(InboundWebhookModel).where(
                    InboundWebhookModel.key == key
                )
            )
            await session.commit()

    async def prune(self, older_than: datetime) -> int:
        """Delete records processed before ``older_than``."""
        async with self._session_factory() as session:
            result = await session.execute(
                delete(InboundWebhookModel).where(
                    InboundWebhookModel.processed_at < older_than
                )
            )
            await session.commit()
            return result.rowcount or 0
