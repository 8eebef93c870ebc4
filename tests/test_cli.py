"""
Tests for the CLI interface.
"""
import json
import os
import shutil
import tempfile
from datetime import datetime
from decimal import Decimal
from unittest.mock import patch

import pytest
import yaml
from typer.testing import CliRunner

from ai_gen_orchestrator.cli.main import app, EXIT_CODE_PASS, EXIT_CODE_FAIL
from ai_gen_orchestrator.core.errors import ErrorKind
from ai_gen_orchestrator.core.jobs import JobStatus
from ai_gen_orchestrator.storage.ledger import CreditLedger
from ai_gen_orchestrator.storage.models import JobLedgerRecord
from ai_gen_orchestrator.storage.repository import JobRecordRepository

runner = CliRunner()


def _record(job_id="job-1", status=JobStatus.SUCCEEDED, **overrides):
    values = dict(
        id=job_id,
        user_id="alice",
        model_id="wan-2-6",
        variant_id="text-to-video",
        provider="kie-wan",
        prompt="a lighthouse",
        status=status,
        cost=Decimal("70"),
        charged=status is JobStatus.SUCCEEDED,
        created_at=datetime(2024, 1, 1, 12, 0, 0),
        updated_at=datetime(2024, 1, 1, 12, 2, 0),
        provider_task_id="task_1",
        result_url="https://cdn.example.com/out.mp4" if status is JobStatus.SUCCEEDED else None,
    )
    values.update(overrides)
    return JobLedgerRecord(**values)


@pytest.fixture
def workspace():
    """Temp directory with a config file pointing at a fresh database path."""
    temp_dir = tempfile.mkdtemp()
    db_path = os.path.join(temp_dir, "orchestrator.db")
    config_path = os.path.join(temp_dir, "config.yaml")
    with open(config_path, 'w', encoding='utf-8') as f:
        yaml.dump({"database": {"path": db_path}, "logging": {"level": "WARNING"}}, f)
    yield {"dir": temp_dir, "db": db_path, "config": config_path}
    shutil.rmtree(temp_dir, ignore_errors=True)


def invoke(workspace, *args):
    return runner.invoke(app, ["--config", workspace["config"], *args])


@pytest.fixture
def initialized(workspace):
    result = invoke(workspace, "init")
    assert result.exit_code == EXIT_CODE_PASS
    return workspace


class TestSetup:
    """Configuration and database commands."""

    def test_init(self, workspace):
        result = invoke(workspace, "init")
        assert result.exit_code == EXIT_CODE_PASS
        assert "Database initialized" in result.output
        assert os.path.exists(workspace["db"])

    def test_invalid_config(self, workspace):
        with open(workspace["config"], 'w', encoding='utf-8') as f:
            yaml.dump({"database": {"path": "x.db"}, "budget": {"daily": 1}}, f)
        result = invoke(workspace, "init")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid configuration" in result.output

    def test_status_without_database(self, workspace):
        result = invoke(workspace, "status")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Database not found" in result.output

    def test_status(self, initialized):
        with patch.dict(os.environ, {"KIEAI_API_KEY": "k"}):
            result = invoke(initialized, "status")
        assert result.exit_code == EXIT_CODE_PASS
        assert "KIEAI_API_KEY is set" in result.output

    def test_uninitialized_database(self, workspace):
        result = invoke(workspace, "balance", "alice")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Database is not initialized" in result.output


class TestCredits:
    """Balance and ledger commands."""

    def test_grant_and_balance(self, initialized):
        result = invoke(initialized, "grant", "alice", "150", "--reason", "Welcome", "--kind", "bonus")
        assert result.exit_code == EXIT_CODE_PASS

        result = invoke(initialized, "balance", "alice")
        assert result.exit_code == EXIT_CODE_PASS
        assert "150" in result.output

    def test_grant_rejects_bad_amount(self, initialized):
        result = invoke(initialized, "grant", "alice", "-5")
        assert result.exit_code != EXIT_CODE_PASS

    def test_grant_rejects_usage_kind(self, initialized):
        result = invoke(initialized, "grant", "alice", "5", "--kind", "usage")
        assert result.exit_code == EXIT_CODE_FAIL

    def test_balance_unknown_user(self, initialized):
        result = invoke(initialized, "balance", "ghost")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Unknown user" in result.output

    def test_transactions(self, initialized):
        ledger = CreditLedger(initialized["db"])
        ledger.add_credits("alice", Decimal("100"), "Top-up")
        ledger.deduct_credits("alice", Decimal("70"), "Wan 2.6", job_id="j1")

        result = invoke(initialized, "transactions", "alice")
        assert result.exit_code == EXIT_CODE_PASS
        assert "usage" in result.output
        assert "-70" in result.output

    def test_no_transactions(self, initialized):
        result = invoke(initialized, "transactions", "bob")
        assert "No transactions" in result.output


class TestPricing:
    """Price lookups and policy import/export."""

    def test_price(self, initialized):
        result = invoke(initialized, "price", "sora-2-pro", "text-to-video", "-r", "high", "-d", "15")
        assert result.exit_code == EXIT_CODE_PASS
        assert "630" in result.output

    def test_price_rejects_invalid_option(self, initialized):
        result = invoke(initialized, "price", "wan-2-6", "text-to-video", "-d", "7")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid duration" in result.output

    @pytest.mark.parametrize("args, expected", [
        (("veo", "frames-to-video"), "250"),
        (("veo", "extend-video"), "60"),
        (("wan-2-6", "image-to-video", "-r", "1080p", "-d", "15"), "315"),
        (("nano-banana-pro", "image-editing"), "18"),
    ])
    def test_price_variants_needing_inputs(self, initialized, args, expected):
        """Variants that require images or a task id can still be quoted."""
        result = invoke(initialized, "price", *args)
        assert result.exit_code == EXIT_CODE_PASS
        assert expected in result.output

    def test_price_unknown_variant(self, initialized):
        result = invoke(initialized, "price", "veo", "storyboard")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "does not support variant" in result.output

    def test_models(self, workspace):
        result = invoke(workspace, "models", "--kind", "image")
        assert result.exit_code == EXIT_CODE_PASS
        assert "text-to-image" in result.output
        assert "image-editing" in result.output
        assert "wan-2-6" not in result.output

    def test_export_import(self, initialized):
        exported = os.path.join(initialized["dir"], "pricing.json")
        result = invoke(initialized, "pricing-export", "--output", exported)
        assert result.exit_code == EXIT_CODE_PASS

        with open(exported, encoding='utf-8') as f:
            policy = json.load(f)
        policy["VIDEO"]["MODELS"]["sora-2-pro"]["high:15"] = 700
        with open(exported, 'w', encoding='utf-8') as f:
            json.dump(policy, f)

        result = invoke(initialized, "pricing-import", exported)
        assert result.exit_code == EXIT_CODE_PASS

        result = invoke(initialized, "price", "sora-2-pro", "text-to-video", "-r", "high", "-d", "15")
        assert "700" in result.output

    def test_import_invalid_policy(self, initialized):
        path = os.path.join(initialized["dir"], "bad.yaml")
        with open(path, 'w', encoding='utf-8') as f:
            f.write("VIDEO:\n  DEFAULT: -1\nIMAGE:\n  DEFAULT: 1\n")
        result = invoke(initialized, "pricing-import", path)
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid cost policy" in result.output


class TestJobs:
    """History, corrections and generation."""

    def test_history(self, initialized):
        repository = JobRecordRepository(initialized["db"])
        repository.insert_job_record(_record("job-1"))
        repository.insert_job_record(_record("job-2", status=JobStatus.TIMED_OUT))

        result = invoke(initialized, "history")
        assert result.exit_code == EXIT_CODE_PASS
        assert "timed_out" in result.output

        result = invoke(initialized, "history", "--user", "nobody")
        assert "No jobs found" in result.output

    def test_correct(self, initialized):
        JobRecordRepository(initialized["db"]).insert_job_record(_record("job-1"))

        result = invoke(initialized, "correct", "job-1", "failed", "-m", "provider revoked result")
        assert result.exit_code == EXIT_CODE_PASS
        corrected = JobRecordRepository(initialized["db"]).get_job_record("job-1")
        assert corrected.status is JobStatus.FAILED
        assert corrected.error_kind is ErrorKind.PROVIDER_FAILED

        result = invoke(initialized, "correct", "job-1", "succeeded")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "already been corrected" in result.output

    def test_correct_unknown_status(self, initialized):
        result = invoke(initialized, "correct", "job-1", "done")
        assert result.exit_code != EXIT_CODE_PASS

    @patch("ai_gen_orchestrator.cli.main.GenerationOrchestrator")
    def test_generate_success(self, mock_orchestrator, initialized):
        instance = mock_orchestrator.from_config.return_value
        instance.submit_generation_job.return_value = _record("job-9")

        result = invoke(
            initialized, "generate", "--user", "alice", "--model", "wan-2-6",
            "--variant", "text-to-video", "--prompt", "a lighthouse", "--max-attempts", "5",
        )

        assert result.exit_code == EXIT_CODE_PASS
        assert "job-9" in result.output
        assert "succeeded" in result.output
        args, kwargs = instance.submit_generation_job.call_args
        assert args[:3] == ("alice", "wan-2-6", "text-to-video")
        assert kwargs["polling"].max_attempts == 5
        instance.close.assert_called_once()

    @patch("ai_gen_orchestrator.cli.main.GenerationOrchestrator")
    def test_generate_failure_exit_code(self, mock_orchestrator, initialized):
        mock_orchestrator.from_config.return_value.submit_generation_job.return_value = _record(
            "job-9",
            status=JobStatus.FAILED,
            error_kind=ErrorKind.INSUFFICIENT_CREDITS,
            error_message="Insufficient credits: 70 required, 0 available",
        )
        result = invoke(
            initialized, "generate", "-u", "alice", "-m", "wan-2-6", "-v", "text-to-video", "-p", "x",
        )
        assert result.exit_code == EXIT_CODE_FAIL
        assert "insufficient_credits" in result.output

    def test_generate_without_api_key(self, initialized):
        with patch.dict(os.environ, {}, clear=True):
            result = invoke(
                initialized, "generate", "-u", "alice", "-m", "wan-2-6", "-v", "text-to-video", "-p", "x",
            )
        assert result.exit_code == EXIT_CODE_FAIL
        assert "KIEAI_API_KEY" in result.output
