"""Subscription store - per-user subscription state.

Defines the store interface used by the reconciler, payment sessions and the
expiry sweeper, and the thread-safe in-memory implementation. Every mutating
method is a single atomic update of one record, or one bulk predicate update.
Updates are last-write-wins.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from todo_subscriptions.models.subscription import MutationSource, SubscriptionRecord
from todo_subscriptions.state_logger import log_bulk_change, log_subscription_change
from todo_subscriptions.utils.clock import ensure_utc, utc_now


class SubscriptionNotFoundError(Exception):
    """Raised when no subscription record exists for a user."""

    pass


class SubscriptionRepository(ABC):
    """Interface shared by the in-memory and SQL stores."""

    @abstractmethod
    def create(self, user_id: str) -> SubscriptionRecord:
        """Create an inactive record. Raises ValueError if one exists."""

    @abstractmethod
    def find(self, user_id: str) -> Optional[SubscriptionRecord]:
        """Find a record by user id (None if absent)."""

    @abstractmethod
    def find_by_customer_id(self, customer_id: str) -> Optional[SubscriptionRecord]:
        """Find the first record correlated with a processor customer."""

    @abstractmethod
    def find_by_subscription_code(self, subscription_code: str) -> List[SubscriptionRecord]:
        """Find all records holding a processor subscription code."""

    @abstractmethod
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
        """Set a user active until ``end_date``.

        Correlation ids are only overwritten when a value is supplied.
        ``default_subscription_code`` is stored only when the record holds no code.

        Raises:
            SubscriptionNotFoundError: If no record exists and create_missing is False
        """

    @abstractmethod
    def activate_by_customer_id(
        self,
        customer_id: str,
        end_date: datetime,
        source: MutationSource,
        subscription_code: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[SubscriptionRecord]:
        """Activate the record correlated with ``customer_id``; None when no match."""

    @abstractmethod
    def deactivate(
        self,
        user_id: str,
        source: MutationSource,
        clear_subscription_code: bool = False,
        now: Optional[datetime] = None,
    ) -> SubscriptionRecord:
        """Revoke access for a user.

        Raises:
            SubscriptionNotFoundError: If no record exists
        """

    @abstractmethod
    def deactivate_by_customer_id(
        self,
        customer_id: str,
        source: MutationSource,
        now: Optional[datetime] = None,
    ) -> Optional[SubscriptionRecord]:
        """Revoke access for the record correlated with ``customer_id``, keeping its ids."""

    @abstractmethod
    def disable_by_subscription_code(
        self,
        subscription_code: str,
        source: MutationSource,
        now: Optional[datetime] = None,
    ) -> int:
        """Revoke access and clear the code on every record holding it. Returns the count."""

    @abstractmethod
    def expire_lapsed(self, now: Optional[datetime] = None) -> int:
        """Revoke access on every subscribed record whose end date is before ``now``."""

    @abstractmethod
    def get_all(self) -> List[SubscriptionRecord]:
        """All records."""

    @abstractmethod
    def count(self) -> int:
        """Number of records."""

    @abstractmethod
    def clear(self) -> None:
        """Remove every record. Test and maintenance use only."""

    def get(self, user_id: str) -> SubscriptionRecord:
        """Get a record by user id.

        Raises:
            SubscriptionNotFoundError: If no record exists
        """
        record = self.find(user_id)
        if record is None:
            raise SubscriptionNotFoundError(f"Subscription record not found for user: {user_id}")
        return record

    def exists(self, user_id: str) -> bool:
        return self.find(user_id) is not None

    def is_subscription_active(self, user_id: str, now: Optional[datetime] = None) -> bool:
        """Access check used by the gate in front of the todo endpoints."""
        record = self.find(user_id)
        return record is not None and record.is_active(now)

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, user_id: str) -> bool:
        return self.exists(user_id)


class SubscriptionStore(SubscriptionRepository):
    """In-memory storage for subscription records.

    Thread-safe storage keyed by user id, with lookups by processor customer id
    and subscription code. Callers get copies, never the stored objects.
    """

    def __init__(self):
        """Initialize subscription store with empty storage."""
        self._records: Dict[str, SubscriptionRecord] = {}
        self._lock = threading.RLock()

    def create(self, user_id: str) -> SubscriptionRecord:
        with self._lock:
            if user_id in self._records:
                raise ValueError(f"Subscription record for user '{user_id}' already exists")
            record = SubscriptionRecord(user_id=user_id)
            self._records[user_id] = record
            return record.model_copy()

    def find(self, user_id: str) -> Optional[SubscriptionRecord]:
        with self._lock:
            record = self._records.get(user_id)
            return record.model_copy() if record is not None else None

    def find_by_customer_id(self, customer_id: str) -> Optional[SubscriptionRecord]:
        with self._lock:
            record = self._first_by_customer(customer_id)
            return record.model_copy() if record is not None else None

    def find_by_subscription_code(self, subscription_code: str) -> List[SubscriptionRecord]:
        with self._lock:
            return [
                r.model_copy()
                for r in self._records.values()
                if r.processor_subscription_code == subscription_code
            ]

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
        with self._lock:
            record = self._records.get(user_id)
            if record is None:
                if not create_missing:
                    raise SubscriptionNotFoundError(
                        f"Subscription record not found for user: {user_id}"
                    )
                record = SubscriptionRecord(user_id=user_id)
                self._records[user_id] = record
                old_subscribed = None
            else:
                old_subscribed = record.is_subscribed

            old_end_date = record.subscription_end_date
            record.is_subscribed = True
            record.subscription_end_date = ensure_utc(end_date)
            if customer_id:
                record.processor_customer_id = customer_id
            if subscription_code:
                record.processor_subscription_code = subscription_code
            elif default_subscription_code and not record.processor_subscription_code:
                record.processor_subscription_code = default_subscription_code
            self._touch(record, source, now)

            log_subscription_change(
                user_id=user_id,
                source=source,
                old_subscribed=old_subscribed,
                new_subscribed=True,
                old_end_date=old_end_date,
                new_end_date=record.subscription_end_date,
                customer_id=record.processor_customer_id,
            )
            return record.model_copy()

    def activate_by_customer_id(
        self,
        customer_id: str,
        end_date: datetime,
        source: MutationSource,
        subscription_code: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[SubscriptionRecord]:
        with self._lock:
            record = self._first_by_customer(customer_id)
            if record is None:
                return None
            return self.grant(
                record.user_id,
                end_date,
                source,
                subscription_code=subscription_code,
                now=now,
            )

    def deactivate(
        self,
        user_id: str,
        source: MutationSource,
        clear_subscription_code: bool = False,
        now: Optional[datetime] = None,
    ) -> SubscriptionRecord:
        with self._lock:
            record = self._records.get(user_id)
            if record is None:
                raise SubscriptionNotFoundError(f"Subscription record not found for user: {user_id}")
            old_subscribed = record.is_subscribed
            record.is_subscribed = False
            if clear_subscription_code:
                record.processor_subscription_code = None
            self._touch(record, source, now)

            log_subscription_change(
                user_id=user_id,
                source=source,
                old_subscribed=old_subscribed,
                new_subscribed=False,
                old_end_date=record.subscription_end_date,
                new_end_date=record.subscription_end_date,
                subscription_code_cleared=clear_subscription_code,
            )
            return record.model_copy()

    def deactivate_by_customer_id(
        self,
        customer_id: str,
        source: MutationSource,
        now: Optional[datetime] = None,
    ) -> Optional[SubscriptionRecord]:
        with self._lock:
            record = self._first_by_customer(customer_id)
            if record is None:
                return None
            return self.deactivate(record.user_id, source, now=now)

    def disable_by_subscription_code(
        self,
        subscription_code: str,
        source: MutationSource,
        now: Optional[datetime] = None,
    ) -> int:
        with self._lock:
            affected = 0
            for record in self._records.values():
                if record.processor_subscription_code == subscription_code:
                    record.is_subscribed = False
                    record.processor_subscription_code = None
                    self._touch(record, source, now)
                    affected += 1
        log_bulk_change(
            "disable_by_subscription_code",
            source,
            affected,
            subscription_code=subscription_code,
        )
        return affected

    def expire_lapsed(self, now: Optional[datetime] = None) -> int:
        now = ensure_utc(now) if now is not None else utc_now()
        with self._lock:
            affected = 0
            for record in self._records.values():
                if (
                    record.is_subscribed
                    and record.subscription_end_date is not None
                    and ensure_utc(record.subscription_end_date) < now
                ):
                    record.is_subscribed = False
                    self._touch(record, MutationSource.SWEEPER, now)
                    affected += 1
        log_bulk_change("expire_lapsed", MutationSource.SWEEPER, affected, cutoff=now.isoformat())
        return affected

    def get_all(self) -> List[SubscriptionRecord]:
        with self._lock:
            return [r.model_copy() for r in self._records.values()]

    def count(self) -> int:
        with self._lock:
            return len(self._records)

    def clear(self) -> None:
        """Clear all records.

        Warning: This removes all data. Use with caution.
        """
        with self._lock:
            self._records.clear()

    def _first_by_customer(self, customer_id: str) -> Optional[SubscriptionRecord]:
        for record in self._records.values():
            if record.processor_customer_id == customer_id:
                return record
        return None

    @staticmethod
    def _touch(record: SubscriptionRecord, source: MutationSource, now: Optional[datetime]) -> None:
        record.updated_at = ensure_utc(now) if now is not None else utc_now()
        record.last_mutation_source = source

    def __repr__(self) -> str:
        return f"SubscriptionStore(records={self.count()})"


# Global store instance
_store_instance: Optional[SubscriptionRepository] = None
_store_lock = threading.Lock()


def get_subscription_store() -> SubscriptionRepository:
    """Get global subscription store instance (singleton).

    Uses the SQL store when DATABASE_URL is configured, memory otherwise.
    """
    global _store_instance
    if _store_instance is None:
        with _store_lock:
            if _store_instance is None:
                from todo_subscriptions.config import get_settings

                settings = get_settings()
                if settings.database_url:
                    from todo_subscriptions.repositories.sql_subscription_store import (
                        SqlSubscriptionStore,
                    )

                    _store_instance = SqlSubscriptionStore.from_url(settings.database_url)
                else:
                    _store_instance = SubscriptionStore()
    return _store_instance


def reset_subscription_store() -> None:
    """Drop the global store instance. The next call to get_subscription_store() rebuilds it."""
    global _store_instance
    with _store_lock:
        _store_instance = None
