"""
experiment_sdk.tier3_platform.experiments
──────────────────────────────────────────
AssignmentEngine: deterministic participant → variant assignment. The same
participant always gets the same variant of an experiment for as long as its
weights are unchanged.

The engine keeps no state of its own. Each call reads the experiment's
current VariantSet through the store, hashes (experiment id, participant id)
into [0, 1) and looks the bucket up in the set. Nothing is written.

Usage:
    store = InMemoryExperimentStore()
    engine = AssignmentEngine(store)
    await store.create("checkout-button", [(b"green", 0.5), (b"blue", 0.5)])
    variant_id = await engine.assign("checkout-button", "user-42")
"""
from __future__ import annotations

import time

from experiment_sdk.tier0_core.errors import ExperimentError
from experiment_sdk.tier0_core.logging import get_logger
from experiment_sdk.tier0_core.metrics import counter, histogram
from experiment_sdk.tier1_runtime.validate import require_participant_id
from experiment_sdk.tier2_reliability.store import ExperimentStore
from experiment_sdk.tier3_platform.hashing import AssignmentHasher
from experiment_sdk.tier3_platform.variants import Assignment, Experiment, VariantSet

log = get_logger(__name__)

_assignments_total = counter(
    "experiment_assignments_total",
    "Assignment requests by outcome",
    ["outcome"],
)
_assign_duration = histogram(
    "experiment_assign_duration_seconds",
    "Time to resolve one assignment, store read included",
)


class AssignmentEngine:
    def __init__(self, store: ExperimentStore, hasher: AssignmentHasher | None = None) -> None:
        self._store = store
        self._hasher = hasher or AssignmentHasher()

    @property
    def store(self) -> ExperimentStore:
        return self._store

    @property
    def hasher(self) -> AssignmentHasher:
        return self._hasher

    def _bucket(
        self,
        experiment: Experiment,
        variant_set: VariantSet,
        participant_id: str,
    ) -> Assignment:
        r = self._hasher.hash(experiment.id, participant_id)
        variant_id = variant_set.lookup(r)
        return Assignment(
            experiment_id=experiment.id,
            experiment_name=experiment.name,
            participant_id=participant_id,
            variant_id=variant_id,
            data=experiment.variant(variant_id).data,
            bucket=r,
        )

    async def resolve(self, experiment_name: str, participant_id: str) -> Assignment:
        """
        Assign *participant_id* within the named experiment and return the
        full result, payload included.

        Raises NotFoundError / ExperimentFinishedError from the store
        unchanged, ValidationError for a blank participant ID.
        """
        start = time.perf_counter()
        try:
            require_participant_id(participant_id)
            experiment, variant_set = await self._store.load_active(experiment_name)
            assignment = self._bucket(experiment, variant_set, participant_id)
        except ExperimentError as exc:
            _assignments_total(outcome=exc.code).inc()
            raise
        finally:
            _assign_duration().observe(time.perf_counter() - start)

        _assignments_total(outcome="assigned").inc()
        log.debug(
            "assignment.resolved",
            experiment_id=assignment.experiment_id,
            participant_id=participant_id,
            variant_id=assignment.variant_id,
        )
        return assignment

    async def assign(self, experiment_name: str, participant_id: str) -> str:
        """Return the variant ID *participant_id* is assigned to."""
        assignment = await self.resolve(experiment_name, participant_id)
        return assignment.variant_id

    async def assign_all(self, participant_id: str) -> list[Assignment]:
        """
        Assign *participant_id* in every unfinished experiment, in creation
        order. Reads one snapshot of the experiment list.
        """
        require_participant_id(participant_id)
        experiments = await self._store.list_experiments(include_finished=False)
        assignments = [
            self._bucket(e, e.variant_set(self._store.epsilon), participant_id)
            for e in experiments
        ]
        _assignments_total(outcome="assigned").inc(len(assignments))
        log.debug(
            "assignment.resolved_all",
            participant_id=participant_id,
            experiments=len(assignments),
        )
        return assignments


__all__ = ["AssignmentEngine"]
