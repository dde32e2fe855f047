"""Durable subscription store backed by SQLAlchemy.

Timestamps are stored as naive UTC and converted back to aware UTC on read.
Single-record changes run in one transaction with the row locked where the
database supports it; sweeps and disable-by-code are single UPDATE statements.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import Boolean, DateTime, String, create_engine, delete, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from todo_subscriptions.logging_config import get_logger
from todo_subscriptions.models.subscription import MutationSource, SubscriptionRecord
from todo_subscriptions.repositories.subscription_store import (
    SubscriptionNotFoundError,
    SubscriptionRepository,
)
from todo_subscriptions.state_logger import log_bulk_change, log_subscription_change
from todo_subscriptions.utils.clock import ensure_utc, utc_now

logger = get_logger(__name__)


class Base(DeclarativeBase):
    pass


class SubscriptionRow(Base):
    """One row per user."""

    __tablename__ = "subscriptions"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    is_subscribed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    subscription_end_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)
    processor_customer_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    processor_subscription_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_mutation_source: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)


def _to_db(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return ensure_utc(value).replace(tzinfo=None)


def _to_record(row: SubscriptionRow) -> SubscriptionRecord:
    return SubscriptionRecord(
        user_id=row.user_id,
        is_subscribed=row.is_subscribed,
        subscription_end_date=ensure_utc(row.subscription_end_date),
        processor_customer_id=row.processor_customer_id,
        processor_subscription_code=row.processor_subscription_code,
        updated_at=ensure_utc(row.updated_at),
        last_mutation_source=(
            MutationSource(row.last_mutation_source) if row.last_mutation_source else None
        ),
    )


class SqlSubscriptionStore(SubscriptionRepository):
    """SQLAlchemy implementation of the subscription store."""

    def __init__(self, engine: Engine, create_schema: bool = True):
        self._engine = engine
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)
        if create_schema:
            Base.metadata.create_all(engine)

    @classmethod
    def from_url(cls, database_url: str) -> "SqlSubscriptionStore":
        """Build a store from a database URL.

        In-memory SQLite shares one connection so every session sees the same data.
        """
        in_memory = database_url == "sqlite://" or (
            database_url.startswith("sqlite") and ":memory:" in database_url
        )
        if in_memory:
            engine = create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            engine = create_engine(database_url, pool_pre_ping=True)
        return cls(engine)

    def create(self, user_id: str) -> SubscriptionRecord:
        row = SubscriptionRow(
            user_id=user_id,
            is_subscribed=False,
            updated_at=_to_db(utc_now()),
        )
        try:
            with self._sessions.begin() as session:
                session.add(row)
        except IntegrityError:
            raise ValueError(f"Subscription record for user '{user_id}' already exists")
        return _to_record(row)

    def find(self, user_id: str) -> Optional[SubscriptionRecord]:
        with self._sessions() as session:
            row = session.get(SubscriptionRow, user_id)
            return _to_record(row) if row is not None else None

    def find_by_customer_id(self, customer_id: str) -> Optional[SubscriptionRecord]:
        with self._sessions() as session:
            row = session.scalars(self._by_customer(customer_id)).first()
            return _to_record(row) if row is not None else None

    def find_by_subscription_code(self, subscription_code: str) -> List[SubscriptionRecord]:
        with self._sessions() as session:
            rows = session.scalars(
                select(SubscriptionRow)
                .where(SubscriptionRow.processor_subscription_code == subscription_code)
                .order_by(SubscriptionRow.user_id)
            )
            return [_to_record(row) for row in rows]

    def grant(
        self,
        user_id: str,
        end_date: datetime,
        source: MutationSource,
        customer_id: Optional[str] = None,
        subscription_code: Optional[str] = None,
        create_missing: bool = False,
        now: Optional[datetime] = None,
        default_subscription_code: Optional[str] = None,
    ) -> SubscriptionRecord:
        kwargs = dict(
            customer_id=customer_id,
            subscription_code=subscription_code,
            now=now,
            default_subscription_code=default_subscription_code,
        )
        try:
            return self._grant(user_id, end_date, source, create_missing=create_missing, **kwargs)
        except IntegrityError:
            # Another writer inserted the row between lookup and insert
            logger.info("subscription_insert_conflict", user_id=user_id)
            return self._grant(user_id, end_date, source, create_missing=False, **kwargs)

    def _grant(
        self,
        user_id: str,
        end_date: datetime,
        source: MutationSource,
        customer_id: Optional[str],
        subscription_code: Optional[str],
        create_missing: bool,
        now: Optional[datetime],
        default_subscription_code: Optional[str],
    ) -> SubscriptionRecord:
        with self._sessions.begin() as session:
            row = session.get(SubscriptionRow, user_id, with_for_update=True)
            if row is None:
                if not create_missing:
                    raise SubscriptionNotFoundError(
                        f"Subscription record not found for user: {user_id}"
                    )
                row = self._insert_row(session, user_id)
                old_subscribed = None
            else:
                old_subscribed = row.is_subscribed
            return self._apply_grant(
                row,
                old_subscribed,
                end_date,
                source,
                customer_id,
                subscription_code,
                now,
                default_subscription_code=default_subscription_code,
            )

    def _insert_row(self, session: Session, user_id: str) -> SubscriptionRow:
        """Insert an empty row, flushing so a duplicate key fails before any change is logged."""
        row = SubscriptionRow(user_id=user_id, is_subscribed=False, updated_at=_to_db(utc_now()))
        session.add(row)
        session.flush()
        return row

    def activate_by_customer_id(
        self,
        customer_id: str,
        end_date: datetime,
        source: MutationSource,
        subscription_code: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[SubscriptionRecord]:
        with self._sessions.begin() as session:
            row = session.scalars(self._by_customer(customer_id).with_for_update()).first()
            if row is None:
                return None
            return self._apply_grant(
                row, row.is_subscribed, end_date, source, None, subscription_code, now
            )

    def deactivate(
        self,
        user_id: str,
        source: MutationSource,
        clear_subscription_code: bool = False,
        now: Optional[datetime] = None,
    ) -> SubscriptionRecord:
        with self._sessions.begin() as session:
            row = session.get(SubscriptionRow, user_id, with_for_update=True)
            if row is None:
                raise SubscriptionNotFoundError(f"Subscription record not found for user: {user_id}")
            return self._apply_deactivate(row, source, clear_subscription_code, now)

    def deactivate_by_customer_id(
        self,
        customer_id: str,
        source: MutationSource,
        now: Optional[datetime] = None,
    ) -> Optional[SubscriptionRecord]:
        with self._sessions.begin() as session:
            row = session.scalars(self._by_customer(customer_id).with_for_update()).first()
            if row is None:
                return None
            return self._apply_deactivate(row, source, False, now)

    def disable_by_subscription_code(
        self,
        subscription_code: str,
        source: MutationSource,
        now: Optional[datetime] = None,
    ) -> int:
        stamp = _to_db(now if now is not None else utc_now())
        with self._sessions.begin() as session:
            result = session.execute(
                update(SubscriptionRow)
                .where(SubscriptionRow.processor_subscription_code == subscription_code)
                .values(
                    is_subscribed=False,
                    processor_subscription_code=None,
                    updated_at=stamp,
                    last_mutation_source=source.value,
                )
                .execution_options(synchronize_session=False)
            )
            affected = result.rowcount or 0
        log_bulk_change(
            "disable_by_subscription_code",
            source,
            affected,
            subscription_code=subscription_code,
        )
        return affected

    def expire_lapsed(self, now: Optional[datetime] = None) -> int:
        now = ensure_utc(now) if now is not None else utc_now()
        cutoff = _to_db(now)
        with self._sessions.begin() as session:
            result = session.execute(
                update(SubscriptionRow)
                .where(
                    SubscriptionRow.is_subscribed.is_(True),
                    SubscriptionRow.subscription_end_date.is_not(None),
                    SubscriptionRow.subscription_end_date < cutoff,
                )
                .values(
                    is_subscribed=False,
                    updated_at=cutoff,
                    last_mutation_source=MutationSource.SWEEPER.value,
                )
                .execution_options(synchronize_session=False)
            )
            affected = result.rowcount or 0
        log_bulk_change("expire_lapsed", MutationSource.SWEEPER, affected, cutoff=now.isoformat())
        return affected

    def get_all(self) -> List[SubscriptionRecord]:
        with self._sessions() as session:
            rows = session.scalars(select(SubscriptionRow).order_by(SubscriptionRow.user_id))
            return [_to_record(row) for row in rows]

    def count(self) -> int:
        with self._sessions() as session:
            return session.scalar(select(func.count()).select_from(SubscriptionRow)) or 0

    def clear(self) -> None:
        """Delete all rows.

        Warning: This removes all data. Use with caution.
        """
        with self._sessions.begin() as session:
            session.execute(delete(SubscriptionRow))

    def dispose(self) -> None:
        """Release pooled connections."""
        self._engine.dispose()

    @staticmethod
    def _by_customer(customer_id: str):
        return (
            select(SubscriptionRow)
            .where(SubscriptionRow.processor_customer_id == customer_id)
            .order_by(SubscriptionRow.user_id)
            .limit(1)
        )

    @staticmethod
    def _apply_grant(
        row: SubscriptionRow,
        old_subscribed: Optional[bool],
        end_date: datetime,
        source: MutationSource,
        customer_id: Optional[str],
        subscription_code: Optional[str],
        now: Optional[datetime],
        default_subscription_code: Optional[str] = None,
    ) -> SubscriptionRecord:
        old_end_date = ensure_utc(row.subscription_end_date)
        row.is_subscribed = True
        row.subscription_end_date = _to_db(end_date)
        if customer_id:
            row.processor_customer_id = customer_id
        if subscription_code:
            row.processor_subscription_code = subscription_code
        elif default_subscription_code and not row.processor_subscription_code:
            row.processor_subscription_code = default_subscription_code
        row.updated_at = _to_db(now if now is not None else utc_now())
        row.last_mutation_source = source.value

        log_subscription_change(
            user_id=row.user_id,
            source=source,
            old_subscribed=old_subscribed,
            new_subscribed=True,
            old_end_date=old_end_date,
            new_end_date=ensure_utc(end_date),
            customer_id=row.processor_customer_id,
        )
        return _to_record(row)

    @staticmethod
    def _apply_deactivate(
        row: SubscriptionRow,
        source: MutationSource,
        clear_subscription_code: bool,
        now: Optional[datetime],
    ) -> SubscriptionRecord:
        old_subscribed = row.is_subscribed
        row.is_subscribed = False
        if clear_subscription_code:
            row.processor_subscription_code = None
        row.updated_at = _to_db(now if now is not None else utc_now())
        row.last_mutation_source = source.value

        log_subscription_change(
            user_id=row.user_id,
            source=source,
            old_subscribed=old_subscribed,
            new_subscribed=False,
            old_end_date=ensure_utc(row.subscription_end_date),
            new_end_date=ensure_utc(row.subscription_end_date),
            subscription_code_cleared=clear_subscription_code,
        )
        return _to_record(row)

    def __repr__(self) -> str:
        return f"SqlSubscriptionStore(url={self._engine.url!r})"
