"""
SQLAlchemy-backed implementation of the document store contract.

Documents live in a single ``documents`` table keyed by full path. The
``version`` column doubles as the optimistic-lock column: every UPDATE and
DELETE is issued with ``WHERE version = :seen`` so a batch that raced with
another writer fails as a whole instead of overwriting it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError
from starlette.concurrency import run_in_threadpool

from app.core.config import settings
from app.core.db import Base, SessionLocal
from app.core.errors import PreconditionFailed, TransientStoreError
from app.models import Document
from app.services.store import (
    ChangeCallback,
    DocumentChange,
    DocumentSnapshot,
    DocumentStore,
    Filter,
    Subscription,
    WriteBatch,
    matches,
    split_path,
)

logger = logging.getLogger(__name__)


def _sort_key(value: Any):
    # None sorts first, mixed types fall back to their string form
    return (value is not None, str(type(value)), value if value is not None else 0)


class SqlDocumentStore(DocumentStore):
    """Document store on top of a relational database"""

    def __init__(self, session_factory: sessionmaker = SessionLocal, poll_interval: Optional[float] = None):
        self._session_factory = session_factory
        self.poll_interval = poll_interval if poll_interval is not None else settings.SQL_POLL_INTERVAL_SECONDS

    def create_schema(self) -> None:
        Base.metadata.create_all(bind=self._session_factory.kw["bind"])

    async def _run(self, fn, *args):
        try:
            return await run_in_threadpool(fn, *args)
        except OperationalError as e:
            logger.error(f"Document store unavailable: {e}")
            raise TransientStoreError(str(e)) from e

    # -------- reads --------

    def _get_sync(self, path: str) -> DocumentSnapshot:
        with self._session_factory() as session:
            row = session.get(Document, path)
            return DocumentSnapshot(path, dict(row.data) if row else None)

    def _get_all_sync(self, paths: Sequence[str]) -> List[DocumentSnapshot]:
        if not paths:
            return []
        with self._session_factory() as session:
            rows = session.execute(select(Document).where(Document.path.in_(list(paths)))).scalars().all()
            by_path = {row.path: dict(row.data) for row in rows}
        return [DocumentSnapshot(p, by_path.get(p)) for p in paths]

    def _query_sync(self, collection, filters, order_by, descending, limit) -> List[DocumentSnapshot]:
        with self._session_factory() as session:
            rows = session.execute(
                select(Document).where(Document.collection == collection).order_by(Document.path)
            ).scalars().all()
            docs = [DocumentSnapshot(row.path, dict(row.data)) for row in rows if matches(row.data, filters)]
        if order_by:
            docs.sort(key=lambda d: _sort_key(d.data.get(order_by)), reverse=descending)
        if limit is not None:
            docs = docs[:limit]
        return docs

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

    def _commit_sync(self, batch: WriteBatch) -> None:
        session: Session = self._session_factory()
        try:
            rows: Dict[str, Optional[Document]] = {}

            def load(path: str) -> Optional[Document]:
                if path not in rows:
                    rows[path] = session.get(Document, path)
                return rows[path]

            for expectation in batch.expectations:
                row = load(expectation.path)
                actual = expectation.check(row.data if row is not None else None)
                if actual is not None:
                    raise PreconditionFailed(expectation.path, expectation.field, expectation.value, actual)
                if row is not None:
                    # forces a version-checked UPDATE so a concurrent writer is detected
                    flag_modified(row, "data")

            for op in batch.operations:
                row = load(op.path)
                if op.kind == "set":
                    body = {**(row.data if (row is not None and op.merge) else {}), **op.data}
                    if row is None:
                        collection, doc_id = split_path(op.path)
                        row = Document(path=op.path, collection=collection, doc_id=doc_id, data=body)
                        session.add(row)
                        rows[op.path] = row
                    else:
                        row.data = body
                elif op.kind in ("update", "increment"):
                    if row is None:
                        raise PreconditionFailed(op.path)
                    body = dict(row.data)
                    for name, value in op.data.items():
                        if op.kind == "increment":
                            body[name] = (body.get(name) or 0) + value
                        else:
                            body[name] = value
                    row.data = body
                elif op.kind == "delete":
                    if row is not None and row in session.new:
                        session.expunge(row)
                    elif row is not None:
                        session.delete(row)
                    rows[op.path] = None
                else:
                    raise ValueError(f"Unknown write operation: {op.kind}")

            session.commit()
        except StaleDataError as e:
            session.rollback()
            raise PreconditionFailed("<batch>", "version", "unchanged", "changed") from e
        except IntegrityError as e:
            session.rollback()
            raise PreconditionFailed("<batch>", "path", "absent", "created concurrently") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    async def commit_batch(self, batch: WriteBatch) -> None:
        await self._run(self._commit_sync, batch)

    # -------- subscriptions --------

    def _versions_sync(self, collection: str) -> List[tuple]:
        with self._session_factory() as session:
            rows = session.execute(select(Document).where(Document.collection == collection)).scalars().all()
            return [(row.path, row.version, dict(row.data)) for row in rows]

    def subscribe(self, collection: str, callback: ChangeCallback) -> Subscription:
        """Poll the collection and diff versions into change events"""
        seen: Dict[str, int] = {}

        async def poll():
            while True:
                try:
                    rows = await self._run(self._versions_sync, collection)
                except TransientStoreError:
                    await asyncio.sleep(self.poll_interval)
                    continue

                changes: List[DocumentChange] = []
                current = set()
                for path, version, data in rows:
                    current.add(path)
                    previous = seen.get(path)
                    if previous is None:
                        changes.append(DocumentChange("ADDED", DocumentSnapshot(path, data)))
                    elif previous != version:
                        changes.append(DocumentChange("MODIFIED", DocumentSnapshot(path, data)))
                    seen[path] = version
                for path in [p for p in seen if p not in current]:
                    del seen[path]
                    changes.append(DocumentChange("REMOVED", DocumentSnapshot(path, None)))

                if changes:
                    try:
                        await callback(changes)
                    except Exception as e:
                        logger.exception(f"Subscriber on {collection} failed: {e}")
                await asyncio.sleep(self.poll_interval)

        task = asyncio.get_running_loop().create_task(poll())
        logger.info(f"Polling subscription started on {collection}")
        return Subscription(collection, task.cancel)
