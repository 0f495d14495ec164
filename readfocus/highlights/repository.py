from __future__ import annotations

import hashlib
import time
from copy import deepcopy
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import Column, DateTime, Enum, Float, Integer, String, Text, create_engine, func, select, update
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .models import Passage, PassageSource, SyncJobRecord, SyncJobState, dedupe_passages

Base = declarative_base()


def passage_row_id(passage: Passage) -> str:
    library_id, text = passage.dedup_key
    return hashlib.sha1(f"{library_id}\x00{text}".encode("utf-8")).hexdigest()


class PassageModel(Base):
    __tablename__ = "cached_passages"
    id = Column(String, primary_key=True)
    library_id = Column(String, index=True)
    passage_id = Column(String)
    text = Column(Text)
    create_time = Column(Float)
    chapter_uid = Column(Integer)
    title = Column(String)
    author = Column(String)
    note = Column(Text)
    source = Column(Enum(PassageSource))
    updated_at_ms = Column(Integer)


class SyncJobModel(Base):
    __tablename__ = "sync_jobs"
    id = Column(String, primary_key=True)
    state = Column(Enum(SyncJobState))
    processed = Column(Integer)
    total = Column(Integer)
    message = Column(String)
    error_message = Column(String)
    started_at = Column(DateTime)
    updated_at = Column(DateTime)


class HighlightsRepository:
    """
    Persistence boundary for the merge cache tier and bulk-sync job records.
    The passage half satisfies the merge tier contract (read/write) so a
    repository can be handed straight to TieredCache.
    """

    # Merge tier
    def read(self, library_id: str) -> List[Passage]:
        raise NotImplementedError

    def write(self, passages: Iterable[Passage]) -> int:
        raise NotImplementedError

    def list_passages(self) -> List[Passage]:
        raise NotImplementedError

    def last_updated(self) -> Optional[int]:
        raise NotImplementedError

    # Sync jobs
    def get_job(self, job_id: str) -> Optional[SyncJobRecord]:
        raise NotImplementedError

    def save_job(self, job: SyncJobRecord) -> None:
        raise NotImplementedError

    def update_job_progress(
        self,
        job_id: str,
        state: Optional[SyncJobState] = None,
        processed: Optional[int] = None,
        total: Optional[int] = None,
        message: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        raise NotImplementedError


class InMemoryHighlightsRepository(HighlightsRepository):
    """
    Dict-backed repository for local runs and tests. Stores copies so callers
    cannot mutate persisted state.
    """

    def __init__(self):
        self.passages: Dict[Tuple[str, str], Passage] = {}
        self.jobs: Dict[str, SyncJobRecord] = {}
        self._last_updated: Optional[int] = None

    def _clone(self, obj):
        return deepcopy(obj)

    def read(self, library_id: str) -> List[Passage]:
        return [self._clone(p) for p in self.passages.values() if p.library_id == library_id]

    def write(self, passages: Iterable[Passage]) -> int:
        for passage in dedupe_passages(passages):
            self.passages[passage.dedup_key] = self._clone(passage)
        self._last_updated = int(time.time() * 1000)
        return len(self.passages)

    def list_passages(self) -> List[Passage]:
        return [self._clone(p) for p in self.passages.values()]

    def last_updated(self) -> Optional[int]:
        return self._last_updated

    def get_job(self, job_id: str) -> Optional[SyncJobRecord]:
        job = self.jobs.get(job_id)
        return self._clone(job) if job else None

    def save_job(self, job: SyncJobRecord) -> None:
        self.jobs[job.id] = self._clone(job)

    def update_job_progress(
        self,
        job_id: str,
        state: Optional[SyncJobState] = None,
        processed: Optional[int] = None,
        total: Optional[int] = None,
        message: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        job = self.jobs.get(job_id)
        if not job:
            return
        if state is not None:
            job.state = state
        if processed is not None:
            job.processed = processed
        if total is not None:
            job.total = total
        if message is not None:
            job.message = message
        if error_message is not None:
            job.error_message = error_message
        job.updated_at = datetime.utcnow()
        self.jobs[job_id] = self._clone(job)


class SqlAlchemyHighlightsRepository(HighlightsRepository):
    """
    SQL-backed repository using SQLAlchemy. Works with SQLite/Postgres URLs.
    """

    def __init__(self, database_url: str):
        self.engine = create_engine(database_url, future=True)
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)

    def _session(self) -> Session:
        return self.SessionLocal()

    # region Merge tier
    def _to_passage(self, m: PassageModel) -> Passage:
        return Passage(
            passage_id=m.passage_id,
            library_id=m.library_id,
            text=m.text,
            create_time=m.create_time or 0,
            chapter_uid=m.chapter_uid,
            title=m.title,
            author=m.author,
            note=m.note,
            source=m.source or PassageSource.HIGHLIGHT,
        )

    def read(self, library_id: str) -> List[Passage]:
        with self._session() as session:
            stmt = select(PassageModel).where(PassageModel.library_id == library_id)
            return [self._to_passage(m) for m in session.execute(stmt).scalars().all()]

    def write(self, passages: Iterable[Passage]) -> int:
        now_ms = int(time.time() * 1000)
        with self._session() as session:
            for passage in dedupe_passages(passages):
                model = PassageModel(
                    id=passage_row_id(passage),
                    library_id=passage.library_id,
                    passage_id=passage.passage_id,
                    text=passage.text,
                    create_time=passage.create_time,
                    chapter_uid=passage.chapter_uid,
                    title=passage.title,
                    author=passage.author,
                    note=passage.note,
                    source=passage.source,
                    updated_at_ms=now_ms,
                )
                session.merge(model)
            session.commit()
            return session.execute(select(func.count()).select_from(PassageModel)).scalar_one()

    def list_passages(self) -> List[Passage]:
        with self._session() as session:
            return [self._to_passage(m) for m in session.execute(select(PassageModel)).scalars().all()]

    def last_updated(self) -> Optional[int]:
        with self._session() as session:
            return session.execute(select(func.max(PassageModel.updated_at_ms))).scalar_one_or_none()

    # endregion

    # region Sync jobs
    def get_job(self, job_id: str) -> Optional[SyncJobRecord]:
        with self._session() as session:
            model = session.get(SyncJobModel, job_id)
            if not model:
                return None
            return SyncJobRecord(
                id=model.id,
                state=model.state,
                processed=int(model.processed or 0),
                total=model.total,
                message=model.message,
                error_message=model.error_message,
                started_at=model.started_at,
                updated_at=model.updated_at,
            )

    def save_job(self, job: SyncJobRecord) -> None:
        with self._session() as session:
            model = SyncJobModel(
                id=job.id,
                state=job.state,
                processed=job.processed,
                total=job.total,
                message=job.message,
                error_message=job.error_message,
                started_at=job.started_at,
                updated_at=job.updated_at,
            )
            session.merge(model)
            session.commit()

    def update_job_progress(
        self,
        job_id: str,
        state: Optional[SyncJobState] = None,
        processed: Optional[int] = None,
        total: Optional[int] = None,
        message: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        with self._session() as session:
            stmt = update(SyncJobModel).where(SyncJobModel.id == job_id)
            values = {}
            if state is not None:
                values["state"] = state
            if processed is not None:
                values["processed"] = processed
            if total is not None:
                values["total"] = total
            if message is not None:
                values["message"] = message
            if error_message is not None:
                values["error_message"] = error_message
            if values:
                values["updated_at"] = datetime.utcnow()
                session.execute(stmt.values(**values))
                session.commit()

    # endregion
