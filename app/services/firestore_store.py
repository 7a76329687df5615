"""
Cloud Firestore implementation of the document store contract.

The Admin SDK client is synchronous, so every round-trip runs in the
threadpool. Batches that carry preconditions are committed inside a Firestore
transaction, which re-reads the guarded documents and aborts when any of them
changed; plain batches use a write batch.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Sequence

from firebase_admin import firestore
from google.api_core import exceptions as gexc
from starlette.concurrency import run_in_threadpool

from app.core.errors import PreconditionFailed, TransientStoreError
from app.services.firebase_client import get_firestore_client
from app.services.store import (
    ChangeCallback,
    DocumentChange,
    DocumentSnapshot,
    DocumentStore,
    Filter,
    Subscription,
    WriteBatch,
)

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (
    gexc.ServiceUnavailable,
    gexc.DeadlineExceeded,
    gexc.InternalServerError,
    gexc.ResourceExhausted,
    gexc.Aborted,
)


def _snapshot(doc) -> DocumentSnapshot:
    return DocumentSnapshot(doc.reference.path, doc.to_dict() if doc.exists else None)


class FirestoreDocumentStore(DocumentStore):
    """Document store backed by Cloud Firestore"""

    def __init__(self, client=None):
        self._client = client or get_firestore_client()

    async def _run(self, fn, *args):
        try:
            return await run_in_threadpool(fn, *args)
        except TRANSIENT_ERRORS as e:
            logger.error(f"Firestore unavailable: {e}")
            raise TransientStoreError(str(e)) from e

    def _ref(self, path: str):
        return self._client.document(path)

    # -------- reads --------

    def _get_sync(self, path: str) -> DocumentSnapshot:
        return _snapshot(self._ref(path).get())

    def _get_all_sync(self, paths: Sequence[str]) -> List[DocumentSnapshot]:
        if not paths:
            return []
        by_path = {doc.reference.path: _snapshot(doc) for doc in self._client.get_all([self._ref(p) for p in paths])}
        return [by_path.get(p, DocumentSnapshot(p, None)) for p in paths]

    def _query_sync(self, collection, filters, order_by, descending, limit) -> List[DocumentSnapshot]:
        query = self._client.collection(collection)
        for name, op, value in filters:
            query = query.where(name, op, value)
        if order_by:
            direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
            query = query.order_by(order_by, direction=direction)
        if limit is not None:
            query = query.limit(limit)
        return [_snapshot(doc) for doc in query.stream()]

    async def get(self, path: str) -> DocumentSnapshot:
        return await self._run(self._get_sync, path)

    async def get_all(self, paths: Sequence[str]) -> List[DocumentSnapshot]:
        return await self._run(self._get_all_sync, list(paths))

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[DocumentSnapshot]:
        return await self._run(self._query_sync, collection, list(filters), order_by, descending, limit)

    # -------- writes --------

    def _apply(self, writer, batch: WriteBatch) -> None:
        for op in batch.operations:
            ref = self._ref(op.path)
            if op.kind == "set":
                writer.set(ref, op.data, merge=op.merge)
            elif op.kind == "update":
                writer.update(ref, op.data)
            elif op.kind == "increment":
                writer.update(ref, {name: firestore.Increment(delta) for name, delta in op.data.items()})
            elif op.kind == "delete":
                writer.delete(ref)
            else:
                raise ValueError(f"Unknown write operation: {op.kind}")

    def _commit_sync(self, batch: WriteBatch) -> None:
        try:
            if not batch.expectations:
                writer = self._client.batch()
                self._apply(writer, batch)
                writer.commit()
                return

            @firestore.transactional
            def run(transaction):
                for expectation in batch.expectations:
                    doc = self._ref(expectation.path).get(transaction=transaction)
                    actual = expectation.check(doc.to_dict() if doc.exists else None)
                    if actual is not None:
                        raise PreconditionFailed(expectation.path, expectation.field, expectation.value, actual)
                self._apply(transaction, batch)

            run(self._client.transaction())
        except gexc.NotFound as e:
            # update() on a document that no longer exists
            raise PreconditionFailed(str(e)) from e

    async def commit_batch(self, batch: WriteBatch) -> None:
        await self._run(self._commit_sync, batch)

    # -------- subscriptions --------

    def subscribe(self, collection: str, callback: ChangeCallback) -> Subscription:
        """Bridge a Firestore snapshot listener onto the running event loop"""
        loop = asyncio.get_running_loop()

        def on_snapshot(col_snapshot, changes, read_time):
            converted = []
            for change in changes:
                kind = change.type.name
                doc = change.document
                data = None if kind == "REMOVED" else doc.to_dict()
                converted.append(DocumentChange(kind, DocumentSnapshot(doc.reference.path, data)))
            if converted:
                future = asyncio.run_coroutine_threadsafe(callback(converted), loop)
                future.add_done_callback(_log_failure(collection))

        watch = self._client.collection(collection).on_snapshot(on_snapshot)
        logger.info(f"Snapshot listener attached to {collection}")
        return Subscription(collection, watch.unsubscribe)


def _log_failure(collection: str):
    def done(future):
        if not future.cancelled() and future.exception() is not None:
            logger.error(f"Subscriber on {collection} failed: {future.exception()}")
    return done
