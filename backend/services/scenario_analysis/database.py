import threading
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List, Dict

from sqlalchemy import Column, String, Float, DateTime, JSON, Integer, Text, create_engine, text
from sqlalchemy.orm import declarative_base, sessionmaker

from shared.models.exceptions import DatabaseConnectionException
from .models import AnalysisStatus

logger = logging.getLogger(__name__)
Base = declarative_base()


class JobStore(ABC):
    """Storage capability for terminal analysis job snapshots"""

    @abstractmethod
    def put(self, status: AnalysisStatus) -> None:
        ...

    @abstractmethod
    def get(self, job_id: str) -> Optional[AnalysisStatus]:
        ...

    @abstractmethod
    def get_latest(self, scenario_id: str) -> Optional[AnalysisStatus]:
        ...

    @abstractmethod
    def delete(self, job_id: str) -> bool:
        ...

    @abstractmethod
    def list(self, scenario_id: Optional[str] = None, limit: int = 10) -> List[AnalysisStatus]:
        ...

    def health_check(self) -> bool:
        return True


def _recency_key(status: AnalysisStatus):
    return (status.completed_at or status.created_at, status.created_at)


class InMemoryJobStore(JobStore):
    """Process-local store; snapshots are immutable so they are shared, not copied"""

    def __init__(self):
        self._lock = threading.Lock()
        self._jobs: Dict[str, AnalysisStatus] = {}

    def put(self, status: AnalysisStatus) -> None:
        with self._lock:
            self._jobs[status.job_id] = status

    def get(self, job_id: str) -> Optional[AnalysisStatus]:
        with self._lock:
            return self._jobs.get(job_id)

    def get_latest(self, scenario_id: str) -> Optional[AnalysisStatus]:
        matches = self.list(scenario_id=scenario_id, limit=1)
        return matches[0] if matches else None

    def delete(self, job_id: str) -> bool:
        with self._lock:
            return self._jobs.pop(job_id, None) is not None

    def list(self, scenario_id: Optional[str] = None, limit: int = 10) -> List[AnalysisStatus]:
        with self._lock:
            jobs = [s for s in self._jobs.values() if scenario_id is None or s.scenario_id == scenario_id]
        jobs.sort(key=_recency_key, reverse=True)
        return jobs[:limit]


class AnalysisJobRecord(Base):
    __tablename__ = "analysis_jobs"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(String, unique=True, index=True, nullable=False)
    scenario_id = Column(String, index=True, nullable=False)

    state = Column(String, nullable=False)
    progress = Column(Float, nullable=False, default=0.0)
    result = Column(JSON)
    failure_reason = Column(Text)

    # Timestamps
    created_at = Column(DateTime, nullable=False)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_status(self) -> AnalysisStatus:
        return AnalysisStatus.model_validate({
            "job_id": self.job_id,
            "scenario_id": self.scenario_id,
            "state": self.state,
            "progress": self.progress,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "result": self.result,
            "failure_reason": self.failure_reason,
        })


class DatabaseManager(JobStore):
    def __init__(self, database_url: str, engine_config: Optional[dict] = None):
        try:
            self.database_url = database_url
            self.engine = create_engine(
                self.database_url,
                **(engine_config or {})
            )
            self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine, expire_on_commit=False)
            logger.info("Scenario analysis database connection initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize scenario analysis database connection: {e}")
            raise DatabaseConnectionException(f"Failed to connect to database: {e}")

    def create_tables(self):
        """Create database tables"""
        try:
            Base.metadata.create_all(bind=self.engine)
            logger.info("Scenario analysis database tables created successfully")
        except Exception as e:
            logger.error(f"Failed to create scenario analysis tables: {e}")
            raise DatabaseConnectionException(f"Failed to create tables: {e}")

    def get_session(self):
        """Get database session"""
        try:
            return self.SessionLocal()
        except Exception as e:
            logger.error(f"Failed to create database session: {e}")
            raise DatabaseConnectionException(f"Failed to create database session: {e}")

    def health_check(self) -> bool:
        """Check database health"""
        try:
            with self.get_session() as db:
                db.execute(text("SELECT 1"))
                return True
        except Exception as e:
            logger.error(f"Scenario analysis database health check failed: {e}")
            return False

    def put(self, status: AnalysisStatus) -> None:
        """Insert or replace the snapshot of a job"""
        db = self.get_session()
        try:
            payload = status.model_dump(mode="json", by_alias=True)
            record = db.query(AnalysisJobRecord).filter(
                AnalysisJobRecord.job_id == status.job_id
            ).first()
            if record is None:
                record = AnalysisJobRecord(job_id=status.job_id)
                db.add(record)

            record.scenario_id = status.scenario_id
            record.state = status.state.value
            record.progress = status.progress
            record.result = payload.get("result")
            record.failure_reason = status.failure_reason
            record.created_at = status.created_at
            record.started_at = status.started_at
            record.completed_at = status.completed_at

            db.commit()
            logger.info(f"Saved analysis job {status.job_id} ({status.state.value}) for scenario {status.scenario_id}")

        except Exception as e:
            db.rollback()
            logger.error(f"Failed to save analysis job {status.job_id}: {e}")
            raise DatabaseConnectionException(f"Failed to save analysis job: {e}")
        finally:
            db.close()

    def get(self, job_id: str) -> Optional[AnalysisStatus]:
        """Get analysis job snapshot by ID"""
        db = self.get_session()
        try:
            record = db.query(AnalysisJobRecord).filter(
                AnalysisJobRecord.job_id == job_id
            ).first()
            return record.to_status() if record else None

        except Exception as e:
            logger.error(f"Failed to retrieve analysis job {job_id}: {e}")
            raise DatabaseConnectionException(f"Failed to retrieve analysis job: {e}")
        finally:
            db.close()

    def get_latest(self, scenario_id: str) -> Optional[AnalysisStatus]:
        matches = self.list(scenario_id=scenario_id, limit=1)
        return matches[0] if matches else None

    def delete(self, job_id: str) -> bool:
        db = self.get_session()
        try:
            deleted = db.query(AnalysisJobRecord).filter(
                AnalysisJobRecord.job_id == job_id
            ).delete()
            db.commit()
            return deleted > 0
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to delete analysis job {job_id}: {e}")
            raise DatabaseConnectionException(f"Failed to delete analysis job: {e}")
        finally:
            db.close()

    def list(self, scenario_id: Optional[str] = None, limit: int = 10) -> List[AnalysisStatus]:
        """Most recent job snapshots, optionally for one scenario"""
        db = self.get_session()
        try:
            query = db.query(AnalysisJobRecord)
            if scenario_id is not None:
                query = query.filter(AnalysisJobRecord.scenario_id == scenario_id)
            records = query.order_by(
                AnalysisJobRecord.completed_at.desc(),
                AnalysisJobRecord.created_at.desc(),
            ).limit(limit).all()
            return [record.to_status() for record in records]

        except Exception as e:
            logger.error(f"Failed to list analysis jobs: {e}")
            raise DatabaseConnectionException(f"Failed to list analysis jobs: {e}")
        finally:
            db.close()


def create_job_store(settings) -> JobStore:
    """Build the job store selected by configuration"""
    if settings.job_store_backend == "database":
        manager = DatabaseManager(settings.database_url, settings.database_engine_config)
        manager.create_tables()
        return manager
    return InMemoryJobStore()
