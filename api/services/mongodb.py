# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
MongoDB service layer with transactional request persistence and connection pooling.
"""

import os
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Set
from pymongo import MongoClient, ASCENDING, DESCENDING
from pymongo.client_session import ClientSession
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import (
    ConnectionFailure,
    ServerSelectionTimeoutError,
    DuplicateKeyError
)

from models.base import utcnow
from models.entities import AuditEntry, BenefitRequest
from models.events import DomainEvent, OutboxRecord
from domain.errors import ConcurrentModification, RequestNotFound

logger = logging.getLogger(__name__)

REQUESTS = "benefit_requests"
AUDIT_ENTRIES = "audit_entries"
OUTBOX = "event_outbox"


def _to_document(model_dump: Dict[str, Any], doc_id: str) -> Dict[str, Any]:
    document = dict(model_dump)
    document.pop("id", None)
    document["_id"] = doc_id
    return document


def _from_document(document: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(document)
    data["id"] = str(data.pop("_id"))
    return data


class MongoUnitOfWork:
    """Writes performed inside a MongoDB multi-document transaction."""

    def __init__(self, service: "MongoDBService", session: ClientSession):
        self.service = service
        self.session = session

    def save_request(self, request: BenefitRequest, expected_version: Optional[int] = None) -> None:
        """Insert a request, or replace it only if the stored version matches."""
        collection = self.service.get_collection(REQUESTS)
        document = _to_document(request.model_dump(mode="json"), request.id)

        if expected_version is None:
            try:
                collection.insert_one(document, session=self.session)
            except DuplicateKeyError:
                raise ConcurrentModification(request.id, 0)
            return

        result = collection.replace_one(
            {"_id": request.id, "version": expected_version},
            document,
            session=self.session
        )
        if result.matched_count == 0:
            current = collection.find_one({"_id": request.id}, {"version": 1}, session=self.session)
            if current is None:
                raise RequestNotFound(request.id)
            raise ConcurrentModification(request.id, expected_version, current.get("version"))

    def add_audit_entry(self, entry: AuditEntry) -> None:
        self.service.get_collection(AUDIT_ENTRIES).insert_one(
            _to_document(entry.model_dump(mode="json"), entry.id),
            session=self.session
        )

    def add_events(self, events: List[DomainEvent]) -> None:
        if not events:
            return
        documents = [
            {
                "_id": event.event_id,
                "aggregateId": event.aggregate_id,
                "sequence": event.sequence,
                "occurredAt": event.occurred_at,
                "event": event.model_dump(mode="json"),
                "published": False,
                "attempts": 0,
                "lastError": None
            }
            for event in events
        ]
        self.service.get_collection(OUTBOX).insert_many(documents, ordered=True, session=self.session)


class MongoDBService:
    """MongoDB service with transactional request persistence and connection pooling."""

    def __init__(self, connection_string: str = None, database_name: str = None):
        """Initialize MongoDB service with connection pooling."""
        self.connection_string = connection_string or os.getenv(
            'MONGODB_URI',
            'mongodb://localhost:27017/beneficios_dev?replicaSet=rs0'
        )
        self.database_name = database_name or os.getenv('MONGODB_DATABASE', 'beneficios_dev')
        self._client: Optional[MongoClient] = None
        self._database: Optional[Database] = None

        # Connection pool settings
        self.max_pool_size = int(os.getenv('MONGODB_MAX_POOL_SIZE', '10'))
        self.min_pool_size = int(os.getenv('MONGODB_MIN_POOL_SIZE', '1'))
        self.max_idle_time_ms = int(os.getenv('MONGODB_MAX_IDLE_TIME_MS', '30000'))
        self.server_selection_timeout_ms = int(os.getenv('MONGODB_SERVER_SELECTION_TIMEOUT_MS', '5000'))

        logger.info(f"MongoDB service initialized for database: {self.database_name}")

    @property
    def client(self) -> MongoClient:
        """Get MongoDB client with connection pooling."""
        if self._client is None:
            try:
                self._client = MongoClient(
                    self.connection_string,
                    maxPoolSize=self.max_pool_size,
                    minPoolSize=self.min_pool_size,
                    maxIdleTimeMS=self.max_idle_time_ms,
                    serverSelectionTimeoutMS=self.server_selection_timeout_ms,
                    retryWrites=True,
                    retryReads=True,
                    tz_aware=True
                )
                # Test connection
                self._client.admin.command('ping')
                logger.info("MongoDB connection established successfully")
            except (ConnectionFailure, ServerSelectionTimeoutError) as e:
                logger.error(f"Failed to connect to MongoDB: {e}")
                raise

        return self._client

    @property
    def database(self) -> Database:
        """Get MongoDB database."""
        if self._database is None:
            self._database = self.client[self.database_name]
        return self._database

    def get_collection(self, collection_name: str) -> Collection:
        """Get MongoDB collection."""
        return self.database[collection_name]

    def close_connection(self) -> None:
        """Close MongoDB connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._database = None
            logger.info("MongoDB connection closed")

    def health_check(self) -> Dict[str, Any]:
        """Check MongoDB connection health."""
        try:
            result = self.client.admin.command('ping')
            server_info = self.client.server_info()

            return {
                'status': 'healthy',
                'backend': 'mongodb',
                'ping': result.get('ok') == 1,
                'version': server_info.get('version'),
                'database': self.database_name,
                'connection_pool_size': self.max_pool_size
            }
        except Exception as e:
            logger.error(f"MongoDB health check failed: {e}")
            return {
                'status': 'unhealthy',
                'backend': 'mongodb',
                'error': str(e),
                'database': self.database_name
            }

    @contextmanager
    def transaction(self) -> Iterator[MongoUnitOfWork]:
        """
        Run writes in a multi-document transaction.

        The transaction commits when the block exits cleanly and aborts on
        any exception. Requires a replica set.
        """
        with self.client.start_session() as session:
            with session.start_transaction():
                yield MongoUnitOfWork(self, session)

    # Requests

    def get_request(self, request_id: str) -> Optional[BenefitRequest]:
        document = self.get_collection(REQUESTS).find_one({"_id": request_id})
        if document is None:
            return None
        return BenefitRequest.model_validate(_from_document(document))

    def find_requests(self, status=None) -> List[BenefitRequest]:
        query = {} if status is None else {"status": status.value}
        documents = self.get_collection(REQUESTS).find(query).sort("created_at", DESCENDING)
        return [BenefitRequest.model_validate(_from_document(doc)) for doc in documents]

    # Audit

    def get_audit_entry(self, entry_id: str) -> Optional[AuditEntry]:
        document = self.get_collection(AUDIT_ENTRIES).find_one({"_id": entry_id})
        if document is None:
            return None
        return AuditEntry.model_validate(_from_document(document))

    def list_audit_entries(self, entity: str, entity_id: str) -> List[AuditEntry]:
        documents = self.get_collection(AUDIT_ENTRIES).find(
            {"entity": entity, "entity_id": entity_id}
        ).sort("timestamp", ASCENDING)
        return [AuditEntry.model_validate(_from_document(doc)) for doc in documents]

    def insert_audit_entry(self, entry: AuditEntry) -> None:
        """Persist a standalone audit entry outside a request transaction."""
        self.get_collection(AUDIT_ENTRIES).insert_one(
            _to_document(entry.model_dump(mode="json"), entry.id)
        )

    # Outbox

    def pending_events(self, limit: int = 100, exclude_aggregates: Optional[Set[str]] = None) -> List[OutboxRecord]:
        """Unpublished outbox records in emission order, skipping ``exclude_aggregates``."""
        query: Dict[str, Any] = {"published": False}
        if exclude_aggregates:
            query["aggregateId"] = {"$nin": sorted(exclude_aggregates)}
        documents = self.get_collection(OUTBOX).find(query).sort(
            [("occurredAt", ASCENDING), ("sequence", ASCENDING)]
        ).limit(limit)
        return [
            OutboxRecord(
                event=DomainEvent.model_validate(doc["event"]),
                published=doc.get("published", False),
                attempts=doc.get("attempts", 0),
                last_error=doc.get("lastError")
            )
            for doc in documents
        ]

    def mark_published(self, event_id: str) -> None:
        self.get_collection(OUTBOX).update_one(
            {"_id": event_id},
            {"$set": {"published": True, "publishedAt": utcnow(), "lastError": None},
             "$inc": {"attempts": 1}}
        )

    def mark_failed(self, event_id: str, error: str) -> None:
        self.get_collection(OUTBOX).update_one(
            {"_id": event_id},
            {"$set": {"lastError": error}, "$inc": {"attempts": 1}}
        )

    # Index Management

    def create_indexes(self) -> None:
        """Create performance indexes for all collections."""
        try:
            logger.info("Creating MongoDB indexes...")

            requests = self.get_collection(REQUESTS)
            requests.create_index("protocol", unique=True)
            requests.create_index([("status", ASCENDING), ("created_at", DESCENDING)])
            requests.create_index([("unit_id", ASCENDING), ("status", ASCENDING)])
            requests.create_index("beneficiary.id")

            audit_entries = self.get_collection(AUDIT_ENTRIES)
            audit_entries.create_index([("entity", ASCENDING), ("entity_id", ASCENDING), ("timestamp", ASCENDING)])
            audit_entries.create_index([("actor.user_id", ASCENDING), ("timestamp", DESCENDING)])
            audit_entries.create_index("correlation_id")
            audit_entries.create_index("trace_id")

            outbox = self.get_collection(OUTBOX)
            outbox.create_index([("published", ASCENDING), ("occurredAt", ASCENDING), ("sequence", ASCENDING)])
            outbox.create_index([("aggregateId", ASCENDING), ("sequence", ASCENDING)], unique=True)

            logger.info("MongoDB indexes created successfully")

        except Exception as e:
            logger.error(f"Failed to create MongoDB indexes: {e}")
            raise


# Singleton instance for application use
_mongodb_service: Optional[MongoDBService] = None


def get_mongodb_service() -> MongoDBService:
    """Get singleton MongoDB service instance."""
    global _mongodb_service
    if _mongodb_service is None:
        _mongodb_service = MongoDBService()
    return _mongodb_service


def close_mongodb_connection() -> None:
    """Close MongoDB connection (for cleanup)."""
    global _mongodb_service
    if _mongodb_service:
        _mongodb_service.close_connection()
