"""
legacymigrate command line interface.

Usage:
    # Migrate one entity, or everything in dependency order
    legacymigrate migrate offices [--batch-size 200]
    legacymigrate migrate all [--continue-on-error]

    # Readiness checks only, nothing is written
    legacymigrate migrate all --dry-run
    legacymigrate validate orders

    # Legacy record counts
    legacymigrate counts

    # Drain the embedding queue
    legacymigrate embed [--provider bedrock|dify] [--limit 500]

Settings come from the environment (or a .env file); see MigrationSettings.

Exit codes:
    0  success
    1  migration failure
    2  usage or configuration error
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from legacymigrate.config import MigrationSettings
from legacymigrate.embeddings import (
    BedrockEmbeddingProvider,
    DifyKnowledgeBaseProvider,
    EmbeddingPipeline,
    EmbeddingProvider,
    EmbeddingQueue,
    PostgreSQLEmbeddingQueue,
)
from legacymigrate.exceptions import MigrationError
from legacymigrate.migrators import MIGRATORS, MigrationRunner
from legacymigrate.models import EntityType
from legacymigrate.repositories import (
    MigrationAttemptRepository,
    MigrationLogRepository,
    PostgreSQLMigrationAttemptRepository,
    PostgreSQLMigrationLogRepository,
)
from legacymigrate.sources import LegacyReader, SQLAlchemyLegacyReader
from legacymigrate.targets import PostgreSQLTargetStore, TargetStore

logger = logging.getLogger("legacymigrate")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

ENTITY_CHOICES = [entity_type.value for entity_type in MIGRATORS]


def configure_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """
    Configure root logging once for the process.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR).
        log_file: Also write to this file when given.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


@dataclass
class Services:
    """Stores and repositories wired to the configured databases."""

    legacy: LegacyReader
    target: TargetStore
    attempts: MigrationAttemptRepository
    migration_log: MigrationLogRepository
    embedding_queue: EmbeddingQueue
    engines: tuple[AsyncEngine, ...] = ()

    async def aclose(self) -> None:
        for engine in self.engines:
            await engine.dispose()


def create_services(settings: MigrationSettings) -> Services:
    legacy_engine = create_async_engine(settings.legacy_database_url)
    target_engine = create_async_engine(settings.target_database_url)
    return Services(
        legacy=SQLAlchemyLegacyReader(legacy_engine),
        target=PostgreSQLTargetStore(target_engine, schema=settings.supabase_schema),
        attempts=PostgreSQLMigrationAttemptRepository(target_engine),
        migration_log=PostgreSQLMigrationLogRepository(target_engine),
        embedding_queue=PostgreSQLEmbeddingQueue(target_engine),
        engines=(legacy_engine, target_engine),
    )


def create_provider(settings: MigrationSettings, name: str) -> EmbeddingProvider:
    """
    Build the embedding provider named on the command line.

    Raises:
        ValueError: If the provider is not fully configured.
    """
    if name == "bedrock":
        return BedrockEmbeddingProvider(
            region=settings.aws_bedrock_region,
            model_id=settings.aws_bedrock_model_id,
        )
    if settings.dify_api_key is None or not settings.dify_dataset_id:
        raise ValueError("DIFY_API_KEY and DIFY_DATASET_ID must be set for the dify provider")
    return DifyKnowledgeBaseProvider(
        api_url=settings.dify_api_url,
        api_key=settings.dify_api_key.get_secret_value(),
        dataset_id=settings.dify_dataset_id,
    )


def _entities(name: str) -> list[EntityType] | None:
    return None if name == "all" else [EntityType(name)]


# ==============================================================================
# COMMANDS
# ==============================================================================


async def cmd_migrate(args: argparse.Namespace, settings: MigrationSettings, services: Services) -> int:
    overrides: dict[str, Any] = {}
    if args.batch_size is not None:
        overrides["batch_size"] = args.batch_size
    runner = MigrationRunner(
        services.legacy,
        services.target,
        config=settings.migrator_config(**overrides),
        attempts=services.attempts,
        migration_log=services.migration_log,
        embedding_queue=services.embedding_queue,
        continue_on_error=args.continue_on_error,
    )

    if args.dry_run:
        return await _report_readiness(runner, _entities(args.entity))

    outcome = await runner.run(_entities(args.entity))
    for result in outcome.results:
        print(json.dumps(
            {
                "entity_type": result.entity_type.value,
                "migration_id": str(result.migration_id),
                "final_phase": result.final_phase.value,
                "error": result.error,
                "stats": result.stats.to_dict(),
            },
            indent=2,
            default=str,
        ))
    for entity_type in outcome.not_run:
        print(f"{entity_type.value}: not run")
    return EXIT_OK if outcome.succeeded else EXIT_FAILURE


async def cmd_validate(args: argparse.Namespace, settings: MigrationSettings, services: Services) -> int:
    runner = MigrationRunner(services.legacy, services.target, config=settings.migrator_config())
    return await _report_readiness(runner, _entities(args.entity))


async def _report_readiness(runner: MigrationRunner, entities: list[EntityType] | None) -> int:
    reports = await runner.validate_readiness(entities)
    print(json.dumps([report.to_dict() for report in reports], indent=2))
    return EXIT_OK if all(report.is_ready for report in reports) else EXIT_FAILURE


async def cmd_counts(args: argparse.Namespace, settings: MigrationSettings, services: Services) -> int:
    counts = await services.legacy.count_records()
    print(json.dumps(counts, indent=2))
    return EXIT_OK


async def cmd_embed(args: argparse.Namespace, settings: MigrationSettings, services: Services) -> int:
    try:
        provider = create_provider(settings, args.provider)
    except ValueError as e:
        logger.error("%s", e)
        return EXIT_USAGE

    pipeline = EmbeddingPipeline(services.embedding_queue, services.target, provider)
    try:
        stats = await pipeline.run(limit=args.limit, batch_size=args.batch_size)
    finally:
        if isinstance(provider, DifyKnowledgeBaseProvider):
            await provider.aclose()
    print(json.dumps(stats.to_dict(), indent=2))
    return EXIT_OK if stats.failed == 0 else EXIT_FAILURE


# ==============================================================================
# ENTRY POINT
# ==============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="legacymigrate",
        description="Migrate the legacy dispatch database into Supabase",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    migrate_parser = subparsers.add_parser("migrate", help="Run migrations")
    migrate_parser.add_argument("entity", choices=[*ENTITY_CHOICES, "all"])
    migrate_parser.add_argument("--batch-size", type=int, default=None)
    migrate_parser.add_argument(
        "--dry-run", action="store_true", help="Only check readiness, write nothing"
    )
    migrate_parser.add_argument(
        "--continue-on-error",
        action="store_true",
        help="Keep running later entities after a failure",
    )
    migrate_parser.set_defaults(func=cmd_migrate)

    validate_parser = subparsers.add_parser("validate", help="Check migration readiness")
    validate_parser.add_argument("entity", choices=[*ENTITY_CHOICES, "all"])
    validate_parser.set_defaults(func=cmd_validate)

    counts_parser = subparsers.add_parser("counts", help="Show legacy record counts")
    counts_parser.set_defaults(func=cmd_counts)

    embed_parser = subparsers.add_parser("embed", help="Process the embedding queue")
    embed_parser.add_argument("--provider", choices=["bedrock", "dify"], default="bedrock")
    embed_parser.add_argument("--limit", type=int, default=100)
    embed_parser.add_argument("--batch-size", type=int, default=25)
    embed_parser.set_defaults(func=cmd_embed)

    return parser


async def _run(args: argparse.Namespace, settings: MigrationSettings) -> int:
    services = create_services(settings)
    try:
        return await args.func(args, settings, services)
    finally:
        await services.aclose()


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = MigrationSettings()
    configure_logging(args.log_level or settings.log_level, settings.log_file_path)

    if getattr(args, "batch_size", None) is not None and args.batch_size < 1:
        parser.error("--batch-size must be at least 1")

    try:
        return asyncio.run(_run(args, settings))
    except MigrationError as e:
        logger.error("Migration failed: %s", e, extra={"error": e.to_dict()})
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
