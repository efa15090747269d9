"""
Unit tests for the legacymigrate command line interface.

Tests cover:
- Argument parsing and usage errors
- migrate, validate and counts against in-memory services
- embed provider configuration errors
- Exit codes
"""

import json
from unittest.mock import patch

import pytest

from legacymigrate import cli
from legacymigrate.config import MigrationSettings
from legacymigrate.embeddings import BedrockEmbeddingProvider, InMemoryEmbeddingQueue
from legacymigrate.repositories import (
    InMemoryMigrationAttemptRepository,
    InMemoryMigrationLogRepository,
)
from legacymigrate.sources import InMemoryLegacyReader
from legacymigrate.targets import InMemoryTargetStore
from tests.fixtures import legacy_content_types, legacy_tables


@pytest.fixture
def services():
    return cli.Services(
        legacy=InMemoryLegacyReader(legacy_tables(), content_types=legacy_content_types()),
        target=InMemoryTargetStore(),
        attempts=InMemoryMigrationAttemptRepository(),
        migration_log=InMemoryMigrationLogRepository(),
        embedding_queue=InMemoryEmbeddingQueue(),
    )


@pytest.fixture
def run_cli(services, monkeypatch):
    """Run main() against in-memory services without touching logging config."""
    monkeypatch.setenv("MIGRATION_RETRY_DELAY_MS", "0")
    monkeypatch.chdir("/")

    def run(*argv):
        with (
            patch.object(cli, "create_services", return_value=services),
            patch.object(cli, "configure_logging"),
        ):
            return cli.main(list(argv))

    return run


class TestParser:
    """Tests for build_parser."""

    def test_migrate_arguments(self):
        args = cli.build_parser().parse_args(
            ["migrate", "offices", "--batch-size", "50", "--continue-on-error"]
        )

        assert args.entity == "offices"
        assert args.batch_size == 50
        assert args.continue_on_error
        assert not args.dry_run
        assert args.func is cli.cmd_migrate

    def test_unknown_entity_is_usage_error(self):
        with pytest.raises(SystemExit) as exc_info:
            cli.build_parser().parse_args(["migrate", "patients"])
        assert exc_info.value.code == cli.EXIT_USAGE

    def test_command_required(self):
        with pytest.raises(SystemExit) as exc_info:
            cli.build_parser().parse_args([])
        assert exc_info.value.code == cli.EXIT_USAGE

    def test_invalid_batch_size(self, run_cli):
        with pytest.raises(SystemExit) as exc_info:
            run_cli("migrate", "offices", "--batch-size", "0")
        assert exc_info.value.code == cli.EXIT_USAGE


class TestCommands:
    """Tests for the subcommands."""

    def test_migrate_all(self, run_cli, services, capsys):
        code = run_cli("migrate", "all")

        assert code == cli.EXIT_OK
        assert len(services.target.rows("messages")) == 2
        assert len(services.migration_log.entries) == 7
        out = capsys.readouterr().out
        assert '"entity_type": "profiles"' in out
        assert '"final_phase": "done"' in out

    def test_migrate_failure_exit_code(self, run_cli, services, capsys):
        services.target.seed("offices", [{"name": "Closed", "legacy_office_id": 999}])

        code = run_cli("migrate", "all")

        assert code == cli.EXIT_FAILURE
        assert "orders: not run" in capsys.readouterr().out

    def test_dry_run_writes_nothing(self, run_cli, services, capsys):
        code = run_cli("migrate", "profiles", "--dry-run")

        assert code == cli.EXIT_OK
        assert services.target.insert_calls == []
        [report] = json.loads(capsys.readouterr().out)
        assert report == {
            "entity_type": "profiles",
            "is_ready": True,
            "issues": [],
            "recommendations": [],
        }

    def test_validate_not_ready(self, run_cli, capsys):
        code = run_cli("validate", "orders")

        assert code == cli.EXIT_FAILURE
        [report] = json.loads(capsys.readouterr().out)
        assert "No migrated profiles found in target database" in report["issues"]

    def test_counts(self, run_cli, capsys):
        assert run_cli("counts") == cli.EXIT_OK
        counts = json.loads(capsys.readouterr().out)
        assert counts["users"] == 4
        assert counts["records"] == 2

    def test_embed_requires_dify_settings(self, run_cli, monkeypatch):
        monkeypatch.delenv("DIFY_API_KEY", raising=False)
        monkeypatch.delenv("DIFY_DATASET_ID", raising=False)

        assert run_cli("embed", "--provider", "dify") == cli.EXIT_USAGE

    def test_source_unavailable_exit_code(self, run_cli, services):
        services.legacy.available = False
        assert run_cli("counts") == cli.EXIT_FAILURE


class TestCreateProvider:
    """Tests for create_provider."""

    def test_bedrock(self):
        settings = MigrationSettings(_env_file=None, aws_bedrock_region="eu-west-1")
        with patch("legacymigrate.embeddings.providers.boto3") as boto3:
            provider = cli.create_provider(settings, "bedrock")

        assert isinstance(provider, BedrockEmbeddingProvider)
        boto3.client.assert_called_once_with("bedrock-runtime", region_name="eu-west-1")

    def test_dify_missing_dataset(self):
        settings = MigrationSettings(_env_file=None, dify_api_key="key")
        with pytest.raises(ValueError, match="DIFY_DATASET_ID"):
            cli.create_provider(settings, "dify")
