"""Tests for CLI interface"""

from __future__ import annotations

import logging

import click
import pytest
from click.testing import CliRunner

from sheetsguard.cli import _die, cli, parse_plan_file, setup_logging
from sheetsguard.domain.models.range_request import RequestKind


@pytest.fixture
def runner(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for name in ("SHEETSGUARD_RETRY_PRESET", "SHEETSGUARD_CACHE_TTL", "SHEETSGUARD_RATE_LIMIT_MAX_CALLS"):
        monkeypatch.delenv(name, raising=False)
    return CliRunner()


class TestSetupLogging:
    """Tests for setup_logging function"""

    def test_setup_logging_info_level(self):
        """Test that logging is set to INFO level by default"""
        setup_logging(verbose=False)
        assert logging.getLogger().level == logging.INFO

    def test_setup_logging_debug_level(self):
        """Test that logging is set to DEBUG level when verbose"""
        setup_logging(verbose=True)
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("sheetsguard").level == logging.DEBUG


class TestDie:
    """Tests for _die function"""

    def test_die_without_exception(self):
        """Test _die without exception"""
        with pytest.raises(click.ClickException, match="Test error"):
            _die("Test error", verbose=False)

    def test_die_with_exception(self):
        """Test _die with exception"""
        with pytest.raises(click.ClickException, match="Test error"):
            _die("Test error", verbose=True, exc=ValueError("Test exception"))


class TestParsePlanFile:
    """Tests for plan file parsing"""

    def test_parse_reads_and_writes(self, tmp_path):
        path = tmp_path / "ranges.tsv"
        path.write_text("# comment\ns1\tSheet1!A1:B2\n\ns2\tSheet1!C1\twrite\n", encoding="utf-8")

        requests = parse_plan_file(path)

        assert [(r.resource_id, r.target, r.kind) for r in requests] == [
            ("s1", "Sheet1!A1:B2", RequestKind.READ),
            ("s2", "Sheet1!C1", RequestKind.WRITE),
        ]

    def test_missing_target(self, tmp_path):
        path = tmp_path / "ranges.tsv"
        path.write_text("s1\n", encoding="utf-8")
        with pytest.raises(ValueError, match=":1: expected"):
            parse_plan_file(path)

    def test_unknown_kind(self, tmp_path):
        path = tmp_path / "ranges.tsv"
        path.write_text("s1\tA1\tdelete\n", encoding="utf-8")
        with pytest.raises(ValueError, match="unknown request kind"):
            parse_plan_file(path)


class TestConfigCommand:
    """Tests for the config command"""

    def test_prints_defaults_as_yaml(self, runner):
        result = runner.invoke(cli, ["config"], obj={})
        assert result.exit_code == 0
        assert "max_calls: 100" in result.output
        assert "preset: default" in result.output

    def test_uses_config_file(self, runner, tmp_path):
        path = tmp_path / "custom.yml"
        path.write_text("cache:\n  ttl: 12\n", encoding="utf-8")
        result = runner.invoke(cli, ["--config", str(path), "config"], obj={})
        assert result.exit_code == 0
        assert "ttl: 12.0" in result.output

    def test_invalid_config_file(self, runner, tmp_path):
        path = tmp_path / "custom.yml"
        path.write_text("batch:\n  max_batch_size: 0\n", encoding="utf-8")
        result = runner.invoke(cli, ["--config", str(path), "config"], obj={})
        assert result.exit_code == 1
        assert "Configuration validation failed" in result.output


class TestDelaysCommand:
    """Tests for the delays command"""

    def test_configured_schedule(self, runner):
        result = runner.invoke(cli, ["delays"], obj={})
        assert result.exit_code == 0
        assert "Retry 1: 1.00s" in result.output
        assert "Retry 3: 4.00s" in result.output

    def test_preset_schedule(self, runner):
        result = runner.invoke(cli, ["delays", "--preset", "aggressive"], obj={})
        assert result.exit_code == 0
        assert "Retry 2: 0.75s" in result.output
        assert "Retry 3" not in result.output

    def test_none_preset(self, runner):
        result = runner.invoke(cli, ["delays", "--preset", "none"], obj={})
        assert "Retries disabled" in result.output

    def test_unknown_preset(self, runner):
        result = runner.invoke(cli, ["delays", "--preset", "reckless"], obj={})
        assert result.exit_code == 2


class TestPlanCommand:
    """Tests for the plan command"""

    def test_plan_output(self, runner, tmp_path):
        path = tmp_path / "ranges.tsv"
        path.write_text("s1\tA1\ns2\tB1\ns1\tC1\n", encoding="utf-8")

        result = runner.invoke(cli, ["plan", str(path)], obj={})

        assert result.exit_code == 0
        assert "Batch 1 [s1 read]: 2 ranges" in result.output
        assert "Batch 2 [s2 read]: 1 ranges" in result.output
        assert "3 requests -> 2 calls" in result.output

    def test_max_batch_size_override(self, runner, tmp_path):
        path = tmp_path / "ranges.tsv"
        path.write_text("".join(f"s1\tA{i}\n" for i in range(5)), encoding="utf-8")

        result = runner.invoke(cli, ["plan", str(path), "--max-batch-size", "2"], obj={})

        assert result.exit_code == 0
        assert "5 requests -> 3 calls" in result.output

    def test_malformed_file(self, runner, tmp_path):
        path = tmp_path / "ranges.tsv"
        path.write_text("just-one-column\n", encoding="utf-8")
        result = runner.invoke(cli, ["plan", str(path)], obj={})
        assert result.exit_code == 1
        assert "expected" in result.output


class TestChunksCommand:
    """Tests for the chunks command"""

    def test_large_dataset_is_chunked(self, runner):
        result = runner.invoke(cli, ["chunks", "25000", "4"], obj={})
        assert result.exit_code == 0
        assert "Chunked: yes, 3 chunks of up to 10000 rows" in result.output

    def test_wide_dataset_chunk_count_uses_cell_threshold(self, runner):
        result = runner.invoke(cli, ["chunks", "5000", "50"], obj={})
        assert result.exit_code == 0
        assert "Chunked: yes, 3 chunks of up to 2000 rows" in result.output

    def test_small_dataset_is_not_chunked(self, runner):
        result = runner.invoke(cli, ["chunks", "10", "10"], obj={})
        assert result.exit_code == 0
        assert "Chunked: no" in result.output
        assert "100 cells" in result.output
