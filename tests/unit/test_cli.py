"""Tests for kvprobe.cli and kvprobe.config.

Covers:
  - port parsing and the missing-port fatal error
  - command line wins over KVPROBE_* environment settings
  - exit codes: 0 pass, 1 contract violation, 2 setup failure
  - settings defaults, validators and URL rendering
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import redis
from pydantic import ValidationError

from kvprobe.cli import (
    EXIT_OK,
    EXIT_SETUP,
    EXIT_VIOLATION,
    build_parser,
    load_settings,
    main,
    parse_port,
    run,
)
from kvprobe.config import ProbeSettings
from kvprobe.exceptions import (
    ContractViolation,
    InvalidKeyError,
    InvalidPortError,
    ScriptRejectedError,
    StoreUnavailableError,
)


class TestParsePort:
    def test_valid(self) -> None:
        assert parse_port("6379") == 6379

    @pytest.mark.parametrize("raw", ["", "redis", "63.79", "0", "65536", "-1"])
    def test_invalid(self, raw: str) -> None:
        with pytest.raises(InvalidPortError) as exc_info:
            parse_port(raw)
        assert exc_info.value.raw == raw

    def test_missing(self) -> None:
        with pytest.raises(InvalidPortError, match="No store port"):
            parse_port(None)


class TestLoadSettings:
    def test_port_from_argument(self) -> None:
        args = build_parser().parse_args(["6380"])
        assert load_settings(args).port == 6380

    def test_port_from_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("KVPROBE_PORT", "7000")
        args = build_parser().parse_args([])
        assert load_settings(args).port == 7000

    def test_argument_wins(self, monkeypatch) -> None:
        monkeypatch.setenv("KVPROBE_PORT", "7000")
        monkeypatch.setenv("KVPROBE_HOST", "envhost")
        args = build_parser().parse_args(["6380", "--host", "cli"])
        settings = load_settings(args)
        assert (settings.host, settings.port) == ("cli", 6380)

    def test_missing_port(self) -> None:
        with pytest.raises(InvalidPortError):
            load_settings(build_parser().parse_args([]))

    def test_verbose(self) -> None:
        args = build_parser().parse_args(["1", "-v"])
        assert load_settings(args).log_level == "DEBUG"

    def test_argument_replaces_bad_environment_port(self, monkeypatch) -> None:
        monkeypatch.setenv("KVPROBE_PORT", "not-a-port")
        args = build_parser().parse_args(["6380"])
        assert load_settings(args).port == 6380

    def test_bad_environment_port_without_argument(self, monkeypatch) -> None:
        monkeypatch.setenv("KVPROBE_PORT", "not-a-port")
        with pytest.raises(ValidationError):
            load_settings(build_parser().parse_args([]))


class TestMain:
    def test_bad_port_exits_with_usage_error(self, capsys) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["not-a-port"])
        assert exc_info.value.code == 2
        assert "Invalid store port" in capsys.readouterr().err

    def test_unknown_log_level_exits_with_usage_error(self, monkeypatch, capsys) -> None:
        monkeypatch.setenv("KVPROBE_LOG_LEVEL", "loud")
        with pytest.raises(SystemExit) as exc_info:
            main(["6379"])
        assert exc_info.value.code == 2
        assert "unknown log level" in capsys.readouterr().err

    def test_missing_port_exits_with_usage_error(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 2

    def test_exit_code_from_run(self) -> None:
        with patch("kvprobe.cli.run", return_value=EXIT_VIOLATION) as run_:
            with pytest.raises(SystemExit) as exc_info:
                main(["6379"])
        assert exc_info.value.code == EXIT_VIOLATION
        assert run_.call_args[0][0].port == 6379


class TestRun:
    @pytest.fixture
    def settings(self) -> ProbeSettings:
        return ProbeSettings(port=6379)

    def test_unreachable_store(self, settings, capsys) -> None:
        with patch(
            "kvprobe.cli.RedisStore.connect",
            side_effect=StoreUnavailableError(settings.url, "refused"),
        ):
            assert run(settings) == EXIT_SETUP
        out = capsys.readouterr()
        assert out.out.startswith("redis://localhost:6379/0")
        assert "unreachable" in out.err

    @pytest.mark.parametrize(
        ("error", "code", "prefix"),
        [
            (ContractViolation("GET k", b"a", b"b"), EXIT_VIOLATION, "CONTRACT VIOLATION"),
            (ScriptRejectedError("syntax"), EXIT_SETUP, "ERROR"),
        ],
    )
    def test_failures_map_to_exit_codes(self, settings, capsys, error, code, prefix) -> None:
        store = MagicMock()
        with (
            patch("kvprobe.cli.RedisStore.connect", return_value=store),
            patch("kvprobe.cli.ScenarioEngine") as engine_cls,
        ):
            engine_cls.return_value.run.side_effect = error
            assert run(settings) == code
        assert capsys.readouterr().err.startswith(prefix)
        store.close.assert_called_once()

    def test_non_redis_service_is_a_setup_failure(self, settings, capsys) -> None:
        with patch("kvprobe.storage.client.redis.Redis.from_url") as from_url:
            from_url.return_value.ping.side_effect = redis.exceptions.InvalidResponse(
                "Protocol Error: b'HTTP/1.1 400 Bad Request'"
            )
            assert run(settings) == EXIT_SETUP
        assert capsys.readouterr().err.startswith("ERROR")

    def test_invalid_key_is_a_setup_failure(self, settings, capsys) -> None:
        store = MagicMock()
        with (
            patch("kvprobe.cli.RedisStore.connect", return_value=store),
            patch("kvprobe.cli.ScenarioEngine") as engine_cls,
        ):
            engine_cls.return_value.run.side_effect = InvalidKeyError("empty key")
            assert run(settings) == EXIT_SETUP
        assert capsys.readouterr().err.startswith("ERROR")
        store.close.assert_called_once()

    def test_success(self, settings) -> None:
        store = MagicMock()
        with (
            patch("kvprobe.cli.RedisStore.connect", return_value=store),
            patch("kvprobe.cli.ScenarioEngine") as engine_cls,
        ):
            engine_cls.return_value.run.return_value = []
            assert run(settings) == EXIT_OK
        engine_cls.assert_called_once_with(store, settings)


class TestProbeSettings:
    def test_defaults(self) -> None:
        s = ProbeSettings()
        assert s.shuffle_iterations == 100
        assert s.dense_keys == 10_000
        assert (s.mixed_existing_keys, s.mixed_absent_keys) == (5_000, 5_000)
        assert s.ttl_scale_keys == 10_000
        assert (s.script_ttl_seconds, s.batch_ttl_seconds) == (5, 20)

    def test_env_prefix(self, monkeypatch) -> None:
        monkeypatch.setenv("KVPROBE_DENSE_KEYS", "2000")
        assert ProbeSettings().dense_keys == 2000

    def test_dense_batch_minimum(self) -> None:
        with pytest.raises(ValidationError):
            ProbeSettings(dense_keys=999)

    def test_port_range(self) -> None:
        with pytest.raises(ValidationError):
            ProbeSettings(port=70_000)

    def test_log_level_normalised(self) -> None:
        assert ProbeSettings(log_level="info").log_level == "INFO"

    def test_log_level_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ProbeSettings(log_level="loud")

    def test_url(self) -> None:
        assert ProbeSettings(host="h", port=1, db=2).url == "redis://h:1/2"
