"""
experiment_sdk.tier2_reliability.store
───────────────────────────────────────
ExperimentStore: owns experiment and variant records and enforces their
invariants at write time.

  - experiment names are unique
  - weights are validated as a VariantSet before anything is written
  - finished_at is set exactly once
  - deleting an experiment deletes its variants in the same transaction
  - rebalancing replaces every weight of an experiment at once

Backends:
  InMemoryExperimentStore  immutable snapshots swapped under one asyncio.Lock
  SqlExperimentStore       SQLAlchemy 2.x async over experiments /
                           experiment_variants, one transaction per write

Transient database faults are raised as StorageUnavailableError and are
never retried here (see tier1_runtime.retry).
"""
from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterator, Mapping, Sequence
from contextlib import asynccontextmanager, contextmanager, nullcontext
from dataclasses import replace
from datetime import datetime
from typing import Protocol, runtime_checkable

from sqlalchemy import (
    DateTime,
    Float,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
    delete,
    select,
    update,
)
from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlalchemy.orm import Mapped, joinedload, mapped_column, relationship

from experiment_sdk.tier0_core.data import (
    Base,
    build_session_factory,
    create_all,
    session_scope,
    shares_connection,
)
from experiment_sdk.tier0_core.errors import (
    AlreadyFinishedError,
    DuplicateNameError,
    ExperimentFinishedError,
    NotFoundError,
    StorageUnavailableError,
)
from experiment_sdk.tier0_core.ids import new_id
from experiment_sdk.tier0_core.logging import get_logger
from experiment_sdk.tier0_core.metrics import counter
from experiment_sdk.tier1_runtime.clock import Clock, as_utc
from experiment_sdk.tier1_runtime.validate import (
    CreateExperimentRequest,
    VariantInput,
    parse_create_request,
)
from experiment_sdk.tier3_platform.variants import (
    DEFAULT_EPSILON,
    Experiment,
    Variant,
    VariantSet,
)

log = get_logger(__name__)

_writes_total = counter(
    "experiment_store_writes_total",
    "Experiment store writes by backend, operation and outcome",
    ["backend", "operation", "outcome"],
)


# ── Interface ─────────────────────────────────────────────────────────────────

@runtime_checkable
class ExperimentStore(Protocol):
    @property
    def epsilon(self) -> float: ...

    async def create(self, name: str, variants: Sequence[VariantInput]) -> Experiment: ...

    async def get(self, experiment_id: str) -> Experiment: ...

    async def list_experiments(self, *, include_finished: bool = True) -> list[Experiment]: ...

    async def list_variants(self, experiment_id: str) -> list[Variant]: ...

    async def finish(self, experiment_id: str) -> Experiment: ...

    async def delete(self, experiment_id: str) -> None: ...

    async def rebalance(self, experiment_id: str, weights: Mapping[str, float]) -> Experiment: ...

    async def load_active(self, name: str) -> tuple[Experiment, VariantSet]: ...


# ── Shared helpers ────────────────────────────────────────────────────────────

def _build_variants(
    experiment_id: str,
    request: CreateExperimentRequest,
    epsilon: float,
) -> tuple[Variant, ...]:
    """Assign IDs and positions, then validate the distribution before any write."""
    variants = tuple(
        Variant(
            id=new_id(),
            experiment_id=experiment_id,
            data=spec.data,
            weight=spec.weight,
            position=position,
        )
        for position, spec in enumerate(request.variants)
    )
    VariantSet([(v.id, v.weight) for v in variants], epsilon=epsilon)
    return variants


def _not_found(experiment_id: str | None = None, name: str | None = None) -> NotFoundError:
    if name is not None:
        return NotFoundError(
            user_message=f"Experiment {name!r} does not exist.",
            experiment_name=name,
        )
    return NotFoundError(
        user_message=f"Experiment {experiment_id} does not exist.",
        experiment_id=experiment_id,
    )


def _duplicate(name: str) -> DuplicateNameError:
    return DuplicateNameError(
        user_message=f"Experiment {name!r} already exists.",
        experiment_name=name,
    )


def _finished(experiment: Experiment) -> ExperimentFinishedError:
    return ExperimentFinishedError(
        user_message=f"Experiment {experiment.name!r} is finished.",
        experiment_id=experiment.id,
        finished_at=experiment.finished_at,
    )


def _active_pair(experiment: Experiment, epsilon: float) -> tuple[Experiment, VariantSet]:
    if experiment.is_finished:
        raise _finished(experiment)
    return experiment, experiment.variant_set(epsilon)


# ── In-memory backend ─────────────────────────────────────────────────────────

class InMemoryExperimentStore:
    """
    Process-local store. Each experiment is held as one frozen Experiment;
    writers build a replacement and swap it in under a single lock, and
    readers take whichever snapshot is current without locking.
    """

    backend = "memory"

    def __init__(self, *, clock: Clock | None = None, epsilon: float = DEFAULT_EPSILON) -> None:
        self._clock = clock or Clock()
        self._epsilon = epsilon
        self._by_id: dict[str, Experiment] = {}
        self._id_by_name: dict[str, str] = {}
        self._lock = asyncio.Lock()

    @property
    def epsilon(self) -> float:
        return self._epsilon

    async def create(self, name: str, variants: Sequence[VariantInput]) -> Experiment:
        request = parse_create_request(name, variants)
        experiment_id = new_id()
        built = _build_variants(experiment_id, request, self._epsilon)

        async with self._lock:
            if request.name in self._id_by_name:
                _writes_total(backend=self.backend, operation="create", outcome="duplicate").inc()
                raise _duplicate(request.name)
            experiment = Experiment(
                id=experiment_id,
                name=request.name,
                created_at=self._clock.now(),
                finished_at=None,
                variants=built,
            )
            self._by_id[experiment_id] = experiment
            self._id_by_name[request.name] = experiment_id

        _writes_total(backend=self.backend, operation="create", outcome="ok").inc()
        log.info("experiment.created", experiment_id=experiment_id, variants=len(built))
        return experiment

    async def get(self, experiment_id: str) -> Experiment:
        experiment = self._by_id.get(experiment_id)
        if experiment is None:
            raise _not_found(experiment_id)
        return experiment

    async def list_experiments(self, *, include_finished: bool = True) -> list[Experiment]:
        experiments = [
            e for e in self._by_id.values() if include_finished or not e.is_finished
        ]
        return sorted(experiments, key=lambda e: (e.created_at, e.id))

    async def list_variants(self, experiment_id: str) -> list[Variant]:
        experiment = self._by_id.get(experiment_id)
        if experiment is None:
            return []
        return sorted(experiment.variants, key=lambda v: v.position)

    async def finish(self, experiment_id: str) -> Experiment:
        async with self._lock:
            current = await self.get(experiment_id)
            if current.is_finished:
                raise AlreadyFinishedError(
                    user_message=f"Experiment {current.name!r} is already finished.",
                    experiment_id=experiment_id,
                )
            finished = replace(current, finished_at=self._clock.now())
            self._by_id[experiment_id] = finished

        _writes_total(backend=self.backend, operation="finish", outcome="ok").inc()
        log.info("experiment.finished", experiment_id=experiment_id)
        return finished

    async def delete(self, experiment_id: str) -> None:
        async with self._lock:
            experiment = self._by_id.pop(experiment_id, None)
            if experiment is None:
                raise _not_found(experiment_id)
            del self._id_by_name[experiment.name]

        _writes_total(backend=self.backend, operation="delete", outcome="ok").inc()
        log.info("experiment.deleted", experiment_id=experiment_id, variants=len(experiment.variants))

    async def rebalance(self, experiment_id: str, weights: Mapping[str, float]) -> Experiment:
        async with self._lock:
            current = await self.get(experiment_id)
            if current.is_finished:
                raise _finished(current)
            new_set = current.variant_set(self._epsilon).rebalanced(weights)
            updated = replace(
                current,
                variants=tuple(replace(v, weight=new_set.weight_of(v.id)) for v in current.variants),
            )
            self._by_id[experiment_id] = updated

        _writes_total(backend=self.backend, operation="rebalance", outcome="ok").inc()
        log.info("experiment.rebalanced", experiment_id=experiment_id)
        return updated

    async def load_active(self, name: str) -> tuple[Experiment, VariantSet]:
        name = name.strip()
        experiment = self._by_id.get(self._id_by_name.get(name, ""))
        if experiment is None:
            raise _not_found(name=name)
        return _active_pair(experiment, self._epsilon)


# ── SQL backend ───────────────────────────────────────────────────────────────

class ExperimentRow(Base):
    __tablename__ = "experiments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    variants: Mapped[list["VariantRow"]] = relationship(
        back_populates="experiment",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="VariantRow.position",
    )


class VariantRow(Base):
    __tablename__ = "experiment_variants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    experiment_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("experiments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    distribution: Mapped[float] = mapped_column(Float, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    experiment: Mapped[ExperimentRow] = relationship(back_populates="variants")


def _variant_from_row(row: VariantRow) -> Variant:
    return Variant(
        id=row.id,
        experiment_id=row.experiment_id,
        data=bytes(row.data),
        weight=row.distribution,
        position=row.position,
    )


def _experiment_from_row(row: ExperimentRow) -> Experiment:
    return Experiment(
        id=row.id,
        name=row.name,
        created_at=as_utc(row.created_at),
        finished_at=as_utc(row.finished_at) if row.finished_at is not None else None,
        variants=tuple(_variant_from_row(v) for v in row.variants),
    )


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    """Translate driver-level connectivity faults into StorageUnavailableError."""
    try:
        yield
    except sa_exc.IntegrityError:
        raise
    except (sa_exc.OperationalError, sa_exc.InterfaceError, sa_exc.TimeoutError, TimeoutError) as exc:
        log.warning("storage.unavailable", operation=operation, error=type(exc).__name__)
        raise StorageUnavailableError(
            user_message="Experiment storage is temporarily unavailable.",
            detail=f"{operation} failed: {exc}",
            operation=operation,
        ) from exc
    except sa_exc.DBAPIError as exc:
        if not exc.connection_invalidated:
            raise
        log.warning("storage.unavailable", operation=operation, error="connection_invalidated")
        raise StorageUnavailableError(
            user_message="Experiment storage is temporarily unavailable.",
            detail=f"{operation} failed: connection lost",
            operation=operation,
        ) from exc


class SqlExperimentStore:
    """
    Store over the experiments / experiment_variants tables.

    Every write runs in one transaction. An experiment and its variants are
    read with a single joined SELECT, so a reader sees either all old or all
    new weights of a rebalance, never a mix.

    On an engine pinned to one connection (in-memory SQLite) all sessions
    share a single database transaction, so they are run one at a time.
    """

    backend = "sql"

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        clock: Clock | None = None,
        epsilon: float = DEFAULT_EPSILON,
    ) -> None:
        self._engine = engine
        self._factory = build_session_factory(engine)
        self._clock = clock or Clock()
        self._epsilon = epsilon
        self._serial = asyncio.Lock() if shares_connection(engine) else nullcontext()

    @property
    def epsilon(self) -> float:
        return self._epsilon

    async def create_schema(self) -> None:
        with _storage_errors("create_schema"):
            await create_all(self._engine)

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        async with self._serial:
            with _storage_errors(operation):
                async with session_scope(self._factory) as session:
                    yield session

    async def _fetch(
        self,
        session: AsyncSession,
        *,
        experiment_id: str | None = None,
        name: str | None = None,
        for_update: bool = False,
    ) -> ExperimentRow | None:
        stmt = select(ExperimentRow).options(joinedload(ExperimentRow.variants))
        if experiment_id is not None:
            stmt = stmt.where(ExperimentRow.id == experiment_id)
        else:
            stmt = stmt.where(ExperimentRow.name == name)
        if for_update:
            stmt = stmt.with_for_update(of=ExperimentRow)
        result = await session.execute(stmt)
        return result.unique().scalar_one_or_none()

    async def _name_taken(self, name: str) -> bool:
        async with self._session("create") as session:
            taken = await session.scalar(select(ExperimentRow.id).where(ExperimentRow.name == name))
        return taken is not None

    async def create(self, name: str, variants: Sequence[VariantInput]) -> Experiment:
        request = parse_create_request(name, variants)
        experiment_id = new_id()
        built = _build_variants(experiment_id, request, self._epsilon)

        try:
            async with self._session("create") as session:
                taken = await session.scalar(
                    select(ExperimentRow.id).where(ExperimentRow.name == request.name)
                )
                if taken is not None:
                    _writes_total(backend=self.backend, operation="create", outcome="duplicate").inc()
                    raise _duplicate(request.name)
                row = ExperimentRow(
                    id=experiment_id,
                    name=request.name,
                    created_at=self._clock.now(),
                    finished_at=None,
                    variants=[
                        VariantRow(
                            id=v.id,
                            experiment_id=experiment_id,
                            data=v.data,
                            distribution=v.weight,
                            position=v.position,
                        )
                        for v in built
                    ],
                )
                session.add(row)
                await session.flush()
                experiment = _experiment_from_row(row)
        except sa_exc.IntegrityError as exc:
            # A concurrent writer won the name between check and insert.
            # Any other constraint failure is not a duplicate.
            if not await self._name_taken(request.name):
                _writes_total(backend=self.backend, operation="create", outcome="error").inc()
                raise
            _writes_total(backend=self.backend, operation="create", outcome="duplicate").inc()
            raise _duplicate(request.name) from exc

        _writes_total(backend=self.backend, operation="create", outcome="ok").inc()
        log.info("experiment.created", experiment_id=experiment_id, variants=len(built))
        return experiment

    async def get(self, experiment_id: str) -> Experiment:
        async with self._session("get") as session:
            row = await self._fetch(session, experiment_id=experiment_id)
            if row is None:
                raise _not_found(experiment_id)
            return _experiment_from_row(row)

    async def list_experiments(self, *, include_finished: bool = True) -> list[Experiment]:
        stmt = (
            select(ExperimentRow)
            .options(joinedload(ExperimentRow.variants))
            .order_by(ExperimentRow.created_at, ExperimentRow.id)
        )
        if not include_finished:
            stmt = stmt.where(ExperimentRow.finished_at.is_(None))
        async with self._session("list_experiments") as session:
            result = await session.execute(stmt)
            return [_experiment_from_row(row) for row in result.unique().scalars()]

    async def list_variants(self, experiment_id: str) -> list[Variant]:
        stmt = (
            select(VariantRow)
            .where(VariantRow.experiment_id == experiment_id)
            .order_by(VariantRow.position)
        )
        async with self._session("list_variants") as session:
            result = await session.execute(stmt)
            return [_variant_from_row(row) for row in result.scalars()]

    async def finish(self, experiment_id: str) -> Experiment:
        async with self._session("finish") as session:
            result = await session.execute(
                update(ExperimentRow)
                .where(ExperimentRow.id == experiment_id, ExperimentRow.finished_at.is_(None))
                .values(finished_at=self._clock.now())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                exists = await session.scalar(
                    select(ExperimentRow.id).where(ExperimentRow.id == experiment_id)
                )
                if exists is None:
                    raise _not_found(experiment_id)
                raise AlreadyFinishedError(
                    user_message="Experiment is already finished.",
                    experiment_id=experiment_id,
                )
            row = await self._fetch(session, experiment_id=experiment_id)
            experiment = _experiment_from_row(row)

        _writes_total(backend=self.backend, operation="finish", outcome="ok").inc()
        log.info("experiment.finished", experiment_id=experiment_id)
        return experiment

    async def delete(self, experiment_id: str) -> None:
        async with self._session("delete") as session:
            exists = await session.scalar(
                select(ExperimentRow.id).where(ExperimentRow.id == experiment_id)
            )
            if exists is None:
                raise _not_found(experiment_id)
            # Children first: the FK cascade is not relied upon.
            removed = await session.execute(
                delete(VariantRow).where(VariantRow.experiment_id == experiment_id)
            )
            await session.execute(
                delete(ExperimentRow).where(ExperimentRow.id == experiment_id)
            )

        _writes_total(backend=self.backend, operation="delete", outcome="ok").inc()
        log.info("experiment.deleted", experiment_id=experiment_id, variants=removed.rowcount)

    async def rebalance(self, experiment_id: str, weights: Mapping[str, float]) -> Experiment:
        async with self._session("rebalance") as session:
            row = await self._fetch(session, experiment_id=experiment_id, for_update=True)
            if row is None:
                raise _not_found(experiment_id)
            current = _experiment_from_row(row)
            if current.is_finished:
                raise _finished(current)
            new_set = current.variant_set(self._epsilon).rebalanced(weights)
            for variant_row in row.variants:
                variant_row.distribution = new_set.weight_of(variant_row.id)
            await session.flush()
            experiment = _experiment_from_row(row)

        _writes_total(backend=self.backend, operation="rebalance", outcome="ok").inc()
        log.info("experiment.rebalanced", experiment_id=experiment_id)
        return experiment

    async def load_active(self, name: str) -> tuple[Experiment, VariantSet]:
        name = name.strip()
        async with self._session("load_active") as session:
            row = await self._fetch(session, name=name)
            if row is None:
                raise _not_found(name=name)
            experiment = _experiment_from_row(row)
        return _active_pair(experiment, self._epsilon)


__all__ = [
    "ExperimentStore", "InMemoryExperimentStore", "SqlExperimentStore",
    "ExperimentRow", "VariantRow",
]
