"""
Limit Behavior Engine — Persistence
=====================================
SQLAlchemy tables and CRUD for simulation runs and their steps.

A run is one simulation session's metadata; steps are the
individual ticks stored for playback.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from sqlalchemy import (
    JSON, DateTime, Float, ForeignKey, Integer, String, Text,
    create_engine, delete, event, func, select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import (
    DeclarativeBase, Mapped, mapped_column, relationship, sessionmaker,
)

from limit_engine.config import SQLITE_BUSY_TIMEOUT_MS, database_url


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class SimulationRun(Base):
    """Metadata for a complete simulation session."""
    __tablename__ = "simulation_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    configuration: Mapped[dict] = mapped_column(JSON, nullable=False)

    steps: Mapped[list["SimulationStep"]] = relationship(
        back_populates="run",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="SimulationStep.step_index",
    )


class SimulationStep(Base):
    """One evaluated tick of a run."""
    __tablename__ = "simulation_steps"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[int] = mapped_column(
        ForeignKey("simulation_runs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    step_index: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp: Mapped[float] = mapped_column(Float, nullable=False)   # simulation time
    energy: Mapped[float] = mapped_column(Float, nullable=False)
    trend: Mapped[float] = mapped_column(Float, nullable=False)
    noise: Mapped[float] = mapped_column(Float, nullable=False)
    effective_energy: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    calculated_state: Mapped[str] = mapped_column(String(32), nullable=False)

    run: Mapped[SimulationRun] = relationship(back_populates="steps")


# Wire name → column attribute for incoming step payloads
STEP_FIELDS = {
    'stepIndex': 'step_index',
    'timestamp': 'timestamp',
    'energy': 'energy',
    'trend': 'trend',
    'noise': 'noise',
    'effectiveEnergy': 'effective_energy',
    'calculatedState': 'calculated_state',
}


def run_to_dict(run: SimulationRun) -> dict[str, Any]:
    created = run.created_at
    return {
        "id": run.id,
        "name": run.name,
        "description": run.description,
        "createdAt": created.isoformat() if created else None,
        "configuration": run.configuration,
    }


def step_to_dict(step: SimulationStep) -> dict[str, Any]:
    return {
        "id": step.id,
        "runId": step.run_id,
        "stepIndex": step.step_index,
        "timestamp": step.timestamp,
        "energy": step.energy,
        "trend": step.trend,
        "noise": step.noise,
        "effectiveEnergy": step.effective_energy,
        "calculatedState": step.calculated_state,
    }


def create_db_engine(url: Optional[str] = None) -> Engine:
    """Create a SQLite engine safe to share between the server threads."""
    engine = create_engine(
        database_url(url),
        future=True,
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, conn_record):
        cur = dbapi_conn.cursor()
        cur.execute("PRAGMA foreign_keys=ON;")
        cur.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS};")
        cur.close()

    return engine


class DatabaseStorage:
    """CRUD over the run/step tables. All methods return plain dicts."""

    def __init__(self, url: Optional[str] = None, engine: Optional[Engine] = None):
        self.engine = engine or create_db_engine(url)
        self.url = str(self.engine.url)
        self._session = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)

    def init_db(self) -> None:
        Base.metadata.create_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    # ── Runs ────────────────────────────────────────────────

    def create_run(self, name: str, configuration: dict,
                   description: Optional[str] = None) -> dict[str, Any]:
        with self._session.begin() as session:
            run = SimulationRun(name=name, description=description,
                                configuration=dict(configuration))
            session.add(run)
            session.flush()
            return run_to_dict(run)

    def get_runs(self) -> list[dict[str, Any]]:
        """All runs, newest first."""
        with self._session() as session:
            rows = session.scalars(
                select(SimulationRun).order_by(SimulationRun.created_at.desc(),
                                               SimulationRun.id.desc())
            )
            return [run_to_dict(r) for r in rows]

    def get_run(self, run_id: int) -> Optional[dict[str, Any]]:
        with self._session() as session:
            run = session.get(SimulationRun, run_id)
            return run_to_dict(run) if run else None

    def update_run(self, run_id: int, name: Optional[str] = None,
                   description: Optional[str] = None) -> Optional[dict[str, Any]]:
        """Update only the provided fields. Returns None if the run is missing."""
        with self._session.begin() as session:
            run = session.get(SimulationRun, run_id)
            if run is None:
                return None
            if name is not None:
                run.name = name
            if description is not None:
                run.description = description
            session.flush()
            return run_to_dict(run)

    def delete_run(self, run_id: int) -> bool:
        with self._session.begin() as session:
            session.execute(delete(SimulationStep).where(SimulationStep.run_id == run_id))
            result = session.execute(delete(SimulationRun).where(SimulationRun.id == run_id))
            return result.rowcount > 0

    def oldest_run_ids(self, limit: Optional[int] = None) -> list[int]:
        stmt = select(SimulationRun.id).order_by(SimulationRun.created_at, SimulationRun.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._session() as session:
            return list(session.scalars(stmt))

    def count_runs(self) -> int:
        with self._session() as session:
            return session.scalar(select(func.count(SimulationRun.id))) or 0

    # ── Steps ───────────────────────────────────────────────

    def add_steps(self, run_id: int, steps: Iterable[dict[str, Any]]) -> int:
        """Insert steps for one run. Keys are wire names (stepIndex, calculatedState, ...)."""
        rows = []
        for s in steps:
            values = {attr: s[key] for key, attr in STEP_FIELDS.items() if key in s}
            rows.append(SimulationStep(run_id=run_id, **values))
        if not rows:
            return 0
        with self._session.begin() as session:
            session.add_all(rows)
        return len(rows)

    def get_run_steps(self, run_id: int) -> list[dict[str, Any]]:
        with self._session() as session:
            rows = session.scalars(
                select(SimulationStep)
                .where(SimulationStep.run_id == run_id)
                .order_by(SimulationStep.step_index, SimulationStep.id)
            )
            return [step_to_dict(s) for s in rows]

    def get_steps(self, limit: Optional[int] = None) -> list[dict[str, Any]]:
        stmt = select(SimulationStep).order_by(SimulationStep.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._session() as session:
            return [step_to_dict(s) for s in session.scalars(stmt)]

    def count_steps(self, run_id: Optional[int] = None) -> int:
        stmt = select(func.count(SimulationStep.id))
        if run_id is not None:
            stmt = stmt.where(SimulationStep.run_id == run_id)
        with self._session() as session:
            return session.scalar(stmt) or 0

    def step_counts_over(self, limit: int) -> list[tuple[int, int]]:
        """(run_id, step_count) for every run holding more than `limit` steps."""
        with self._session() as session:
            rows = session.execute(
                select(SimulationStep.run_id, func.count(SimulationStep.id))
                .group_by(SimulationStep.run_id)
                .having(func.count(SimulationStep.id) > limit)
            )
            return [(run_id, count) for run_id, count in rows]

    def delete_oldest_steps(self, run_id: int, count: int) -> int:
        """Delete the `count` oldest steps of a run (by timestamp, then id)."""
        if count <= 0:
            return 0
        with self._session.begin() as session:
            ids = list(session.scalars(
                select(SimulationStep.id)
                .where(SimulationStep.run_id == run_id)
                .order_by(SimulationStep.timestamp, SimulationStep.id)
                .limit(count)
            ))
            if not ids:
                return 0
            session.execute(delete(SimulationStep).where(SimulationStep.id.in_(ids)))
            return len(ids)

    # ── Size ────────────────────────────────────────────────

    def used_bytes(self) -> int:
        """Bytes held by live pages; shrinks as rows are deleted, unlike the file."""
        with self.engine.connect() as conn:
            page_size = conn.exec_driver_sql("PRAGMA page_size").scalar() or 0
            page_count = conn.exec_driver_sql("PRAGMA page_count").scalar() or 0
            free_pages = conn.exec_driver_sql("PRAGMA freelist_count").scalar() or 0
        return int((page_count - free_pages) * page_size)

    def file_size(self) -> int:
        path = self.engine.url.database
        if not path or path == ":memory:" or not os.path.exists(path):
            return 0
        return os.path.getsize(path)
