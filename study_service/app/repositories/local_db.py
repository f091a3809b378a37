"""기기 로컬 SQLite 저장소 (익명 프로필의 크레딧과 학습 기록, 원격 잔액 캐시)."""

from __future__ import annotations

import datetime as dt
import logging
import os
import threading

from sqlalchemy import Column, DateTime, Engine, Integer, String, Text, create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker


logger = logging.getLogger(__name__)

Base = declarative_base()


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class LocalCredit(Base):
    """프로필당 영구 크레딧 카운터 한 행. 로컬에는 만료 크레딧 풀이 없다."""

    __tablename__ = "local_credits"
    profile_id = Column(String(128), primary_key=True)
    balance = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, nullable=False)


class CreditSnapshot(Base):
    """마지막으로 읽은 원격 잔액. 원격 장애 시 stale 응답에 쓴다."""

    __tablename__ = "credit_snapshots"
    user_id = Column(String(128), primary_key=True)
    permanent = Column(Integer, nullable=False)
    expiring = Column(Integer, nullable=False)
    total = Column(Integer, nullable=False)
    as_of = Column(DateTime, nullable=False)


class StudyRecordRow(Base):
    __tablename__ = "study_records"
    id = Column(Integer, primary_key=True)
    user_id = Column(String(128), nullable=False, index=True)
    kind = Column(String(32), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    feature = Column(String(64), nullable=True)
    answer = Column(Text, nullable=True)
    variant = Column(String(64), nullable=True)
    source_note_id = Column(String(64), nullable=True)
    source_note_type = Column(String(32), nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, nullable=False)


class LocalDatabase:
    """DB 파일 하나에 대한 엔진과 세션 팩토리."""

    def __init__(self, db_path: str) -> None:
        if db_path != ":memory:":
            directory = os.path.dirname(db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
        self.db_path = db_path
        self.engine: Engine = create_engine(
            f"sqlite:///{db_path}",
            connect_args={"check_same_thread": False},
        )
        self._session_factory = sessionmaker(
            bind=self.engine,
            autoflush=False,
            expire_on_commit=False,
        )

    def init_schema(self) -> None:
        Base.metadata.create_all(bind=self.engine)
        logger.info("local database ready (path=%s)", self.db_path)

    def session(self) -> Session:
        return self._session_factory()

    def dispose(self) -> None:
        self.engine.dispose()


_databases: dict[str, LocalDatabase] = {}
_lock = threading.Lock()


def get_local_database(db_path: str) -> LocalDatabase:
    """경로별 LocalDatabase 싱글톤을 반환한다. 최초 호출 시 스키마를 만든다."""

    with _lock:
        db = _databases.get(db_path)
        if db is None:
            db = LocalDatabase(db_path)
            db.init_schema()
            _databases[db_path] = db
        return db
