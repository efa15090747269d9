"""
MigrationRunner - runs the per-entity migrators in dependency order.

All migrators of one runner share a single IdLookupIndex, so ids
written by an earlier migrator are resolvable by later ones without
reloading them from the target.

Order:
    profiles -> offices -> order_types -> orders -> projects
    -> instruction_states -> messages
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID, uuid4

from legacymigrate.config import MigratorConfig
from legacymigrate.embeddings.queue import EmbeddingQueue
from legacymigrate.exceptions import MigrationError
from legacymigrate.lookup import IdLookupIndex
from legacymigrate.migrators.base import MigrationOrchestrator
from legacymigrate.migrators.messages import MessagesMigrator
from legacymigrate.migrators.offices import OfficesMigrator
from legacymigrate.migrators.order_types import OrderTypesMigrator
from legacymigrate.migrators.orders import OrdersMigrator
from legacymigrate.migrators.profiles import ProfilesMigrator
from legacymigrate.migrators.projects import ProjectsMigrator
from legacymigrate.migrators.states import InstructionStatesMigrator
from legacymigrate.models import EntityType, MigrationRunResult, ReadinessReport
from legacymigrate.observability import Tracer, create_tracer
from legacymigrate.progress import ProgressCallback
from legacymigrate.repositories.attempts import MigrationAttemptRepository
from legacymigrate.repositories.migration_log import MigrationLogRepository
from legacymigrate.sources.legacy import LegacyReader
from legacymigrate.targets.store import TargetStore

logger = logging.getLogger(__name__)

MIGRATION_ORDER: tuple[type[MigrationOrchestrator], ...] = (
    ProfilesMigrator,
    OfficesMigrator,
    OrderTypesMigrator,
    OrdersMigrator,
    ProjectsMigrator,
    InstructionStatesMigrator,
    MessagesMigrator,
)

MIGRATORS: dict[EntityType, type[MigrationOrchestrator]] = {
    migrator.entity_type: migrator for migrator in MIGRATION_ORDER
}


@dataclass
class RunnerResult:
    """Outcome of running several migrators."""

    results: list[MigrationRunResult] = field(default_factory=list)
    not_run: list[EntityType] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.not_run and all(r.succeeded for r in self.results)

    @property
    def failed(self) -> list[MigrationRunResult]:
        return [r for r in self.results if not r.succeeded]


class MigrationRunner:
    """
    Runs migrators for several entities.

    By default the first failed migrator stops the run and the remaining
    entities are reported as not run. With ``continue_on_error`` every
    requested migrator runs; later ones may then fail their own
    required-lookup checks.

    Example:
        >>> runner = MigrationRunner(reader, store, config=MigratorConfig(batch_size=200))
        >>> outcome = await runner.run()
        >>> outcome.succeeded
        True
    """

    def __init__(
        self,
        legacy: LegacyReader,
        target: TargetStore,
        *,
        config: MigratorConfig | None = None,
        attempts: MigrationAttemptRepository | None = None,
        migration_log: MigrationLogRepository | None = None,
        embedding_queue: EmbeddingQueue | None = None,
        progress_callbacks: Sequence[ProgressCallback] = (),
        transform_options: dict[str, Any] | None = None,
        continue_on_error: bool = False,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self.legacy = legacy
        self.target = target
        self.config = config or MigratorConfig()
        self.lookups = IdLookupIndex()
        self.continue_on_error = continue_on_error
        self._attempts = attempts
        self._migration_log = migration_log
        self._embedding_queue = embedding_queue
        self._progress_callbacks = list(progress_callbacks)
        self._transform_options = dict(transform_options or {})

    def create_migrator(
        self,
        entity_type: EntityType,
        migration_id: UUID | None = None,
    ) -> MigrationOrchestrator:
        """
        Build the migrator for one entity, wired to this runner's shared state.

        Raises:
            KeyError: If no migrator writes ``entity_type``.
        """
        migrator_class = MIGRATORS[entity_type]
        return migrator_class(
            self.legacy,
            self.target,
            config=self.config,
            lookups=self.lookups,
            attempts=self._attempts,
            migration_log=self._migration_log,
            embedding_queue=self._embedding_queue,
            progress_callbacks=self._progress_callbacks,
            transform_options=self._transform_options,
            migration_id=migration_id,
            tracer=self._tracer,
        )

    @staticmethod
    def ordered(entities: Sequence[EntityType] | None = None) -> list[EntityType]:
        """Requested entities in dependency order (all of them if None)."""
        if entities is None:
            return [m.entity_type for m in MIGRATION_ORDER]
        unknown = [e for e in entities if e not in MIGRATORS]
        if unknown:
            raise KeyError(f"No migrator for {', '.join(e.value for e in unknown)}")
        return [m.entity_type for m in MIGRATION_ORDER if m.entity_type in entities]

    async def run(self, entities: Sequence[EntityType] | None = None) -> RunnerResult:
        """
        Run the requested migrators in order.

        Failures are collected, not raised; see RunnerResult.
        """
        order = self.ordered(entities)
        outcome = RunnerResult()
        logger.info("Running migrations: %s", ", ".join(e.value for e in order))

        for position, entity_type in enumerate(order):
            migrator = self.create_migrator(entity_type, migration_id=uuid4())
            try:
                result = await migrator.run()
            except MigrationError as e:
                logger.error("%s migration failed: %s", entity_type.value, e)
                if migrator.result is not None:
                    outcome.results.append(migrator.result)
                if not self.continue_on_error:
                    outcome.not_run = order[position + 1 :]
                    if outcome.not_run:
                        logger.warning(
                            "Stopping after %s failure; not run: %s",
                            entity_type.value,
                            ", ".join(e.value for e in outcome.not_run),
                        )
                    break
                continue
            outcome.results.append(result)

        logger.info(
            "Migrations finished: %d succeeded, %d failed, %d not run",
            len(outcome.results) - len(outcome.failed),
            len(outcome.failed),
            len(outcome.not_run),
        )
        return outcome

    async def validate_readiness(
        self,
        entities: Sequence[EntityType] | None = None,
    ) -> list[ReadinessReport]:
        """Readiness report per requested entity, in dependency order."""
        return [
            await self.create_migrator(entity_type).validate_readiness()
            for entity_type in self.ordered(entities)
        ]


__all__ = [
    "MigrationRunner",
    "RunnerResult",
    "MIGRATION_ORDER",
    "MIGRATORS",
]
