# SPDX-License-Identifier: Apache-2.0

"""
In-memory request store for local development and tests.

This module mirrors the MongoDB store interface: requests with
compare-and-swap on ``version``, append-only audit entries and the event
outbox, all committed together by ``transaction()``.
"""

import threading
from collections import OrderedDict, deque
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Set, Tuple
from opentelemetry import trace
import logging

from models.base import utcnow
from models.entities import AuditEntry, BenefitRequest
from models.events import DomainEvent, OutboxRecord
from domain.errors import ConcurrentModification, RequestNotFound

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)


class InMemoryUnitOfWork:
    """Writes staged during a transaction, applied on commit."""

    def __init__(self):
        self.request_writes: List[Tuple[BenefitRequest, Optional[int]]] = []
        self.audit_entries: List[AuditEntry] = []
        self.events: List[DomainEvent] = []

    def save_request(self, request: BenefitRequest, expected_version: Optional[int] = None) -> None:
        """Stage a request write. ``expected_version=None`` means insert."""
        self.request_writes.append((request.model_copy(deep=True), expected_version))

    def add_audit_entry(self, entry: AuditEntry) -> None:
        self.audit_entries.append(entry)

    def add_events(self, events: List[DomainEvent]) -> None:
        self.events.extend(events)


class InMemoryStore:
    """
    Thread-safe in-memory store.

    Locks are taken per request id at commit time only, so writers of
    different requests never wait on each other.
    """

    def __init__(self, published_retention: int = 1000):
        self.published_retention = published_retention
        self._published_ids: "deque[str]" = deque()
        self._requests: Dict[str, BenefitRequest] = {}
        self._audit_entries: "OrderedDict[str, AuditEntry]" = OrderedDict()
        self._outbox: "OrderedDict[str, OutboxRecord]" = OrderedDict()
        self._request_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._append_lock = threading.Lock()
        logger.info("In-memory store initialized")

    def _lock_for(self, request_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._request_locks.get(request_id)
            if lock is None:
                lock = threading.Lock()
                self._request_locks[request_id] = lock
            return lock

    @contextmanager
    def transaction(self) -> Iterator[InMemoryUnitOfWork]:
        """Stage writes and commit them atomically when the block exits cleanly."""
        uow = InMemoryUnitOfWork()
        yield uow
        self._commit(uow)

    def _commit(self, uow: InMemoryUnitOfWork) -> None:
        with tracer.start_as_current_span("memory_store.commit") as span:
            request_ids = sorted({request.id for request, _ in uow.request_writes})
            span.set_attributes({
                "store.requests": len(request_ids),
                "store.audit_entries": len(uow.audit_entries),
                "store.events": len(uow.events)
            })

            locks = [self._lock_for(request_id) for request_id in request_ids]
            for lock in locks:
                lock.acquire()
            try:
                for request, expected_version in uow.request_writes:
                    current = self._requests.get(request.id)
                    if expected_version is None:
                        if current is not None:
                            raise ConcurrentModification(request.id, 0, current.version)
                    elif current is None:
                        raise RequestNotFound(request.id)
                    elif current.version != expected_version:
                        raise ConcurrentModification(request.id, expected_version, current.version)

                for request, _ in uow.request_writes:
                    self._requests[request.id] = request

                with self._append_lock:
                    for entry in uow.audit_entries:
                        self._audit_entries[entry.id] = entry
                    for event in uow.events:
                        self._outbox[event.event_id] = OutboxRecord(event=event)
            finally:
                for lock in reversed(locks):
                    lock.release()

    # Requests

    def get_request(self, request_id: str) -> Optional[BenefitRequest]:
        request = self._requests.get(request_id)
        return request.model_copy(deep=True) if request is not None else None

    def find_requests(self, status=None) -> List[BenefitRequest]:
        return [
            request.model_copy(deep=True)
            for request in list(self._requests.values())
            if status is None or request.status == status
        ]

    # Audit

    def get_audit_entry(self, entry_id: str) -> Optional[AuditEntry]:
        return self._audit_entries.get(entry_id)

    def list_audit_entries(self, entity: str, entity_id: str) -> List[AuditEntry]:
        with self._append_lock:
            entries = list(self._audit_entries.values())
        matching = [e for e in entries if e.entity == entity and e.entity_id == entity_id]
        return sorted(matching, key=lambda e: e.timestamp)

    def insert_audit_entry(self, entry: AuditEntry) -> None:
        """Persist a standalone audit entry outside a request transaction."""
        with self._append_lock:
            self._audit_entries[entry.id] = entry

    # Outbox

    def pending_events(self, limit: int = 100, exclude_aggregates: Optional[Set[str]] = None) -> List[OutboxRecord]:
        """Unpublished outbox records in emission order, skipping ``exclude_aggregates``."""
        excluded = exclude_aggregates or set()
        with self._append_lock:
            records = [
                r for r in self._outbox.values()
                if not r.published and r.event.aggregate_id not in excluded
            ]
        return [r.model_copy() for r in records[:limit]]

    def mark_published(self, event_id: str) -> None:
        with self._append_lock:
            record = self._outbox[event_id]
            record.published = True
            record.published_at = utcnow()
            record.attempts += 1
            record.last_error = None
            self._published_ids.append(event_id)
            # Published records are kept for inspection up to the retention limit
            while len(self._published_ids) > self.published_retention:
                self._outbox.pop(self._published_ids.popleft(), None)

    def mark_failed(self, event_id: str, error: str) -> None:
        with self._append_lock:
            record = self._outbox[event_id]
            record.attempts += 1
            record.last_error = error

    def outbox_records(self) -> List[OutboxRecord]:
        with self._append_lock:
            return [r.model_copy() for r in self._outbox.values()]

    def health_check(self) -> Dict[str, object]:
        return {
            "status": "healthy",
            "backend": "memory",
            "requests": len(self._requests),
            "audit_entries": len(self._audit_entries),
            "pending_events": sum(1 for r in self._outbox.values() if not r.published)
        }
