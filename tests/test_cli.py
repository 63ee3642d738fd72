"""Tests for command-line bootstrap."""

import pytest

from edge_operator.cli import build_parser, config_from_args


class TestCli:
    def test_flags_override_environment(self, monkeypatch):
        monkeypatch.setenv("EDGE_OPERATOR_RETRY_INTERVAL", "5")
        monkeypatch.setenv("EDGE_OPERATOR_WORKERS", "2")
        args = build_parser().parse_args(
            ["run", "--workers", "8", "--backoff", "--default-namespace", "edge-system"]
        )

        config = config_from_args(args)

        assert config.retry_interval_seconds == 5
        assert config.workers == 8
        assert config.backoff_enabled is True
        assert config.default_namespace == "edge-system"

    def test_defaults(self, monkeypatch):
        for var in ("EDGE_OPERATOR_DEFAULT_NAMESPACE", "EDGE_OPERATOR_WORKERS"):
            monkeypatch.delenv(var, raising=False)
        args = build_parser().parse_args(["run"])

        config = config_from_args(args)

        assert config.default_namespace == "default"
        assert args.api_port is None
        assert args.log_level == "INFO"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])
