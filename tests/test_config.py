"""Tests for settings, the error taxonomy and the CLI helpers."""

import pytest

from automation.__main__ import cli, show_totp
from automation.errors import (
    ElementNotFound,
    InvalidSecret,
    OptionNotFound,
    TwoFactorRequiredButNotConfigured,
    is_browser_crash,
    is_fatal,
)
from src.config import Settings
from tests.fakes import TOTP_SECRET


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in ("POLL_INTERVAL", "MAX_ATTEMPTS", "HEADLESS", "JOB_TIMEOUT"):
            monkeypatch.delenv(name, raising=False)
        s = Settings(_env_file=None)
        assert s.poll_interval == 30.0
        assert s.max_attempts == 3
        assert s.headless is True
        assert s.max_concurrent_jobs == 1
        assert "{record_id}" in s.record_url_template

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("POLL_INTERVAL", "5")
        monkeypatch.setenv("HEADLESS", "false")
        monkeypatch.setenv("ACTIONSTEP_TOTP_SECRET", TOTP_SECRET)
        s = Settings(_env_file=None)
        assert s.poll_interval == 5.0
        assert s.headless is False
        assert s.actionstep_totp_secret == TOTP_SECRET

    def test_missing_required(self):
        s = Settings(_env_file=None, actionstep_username="", actionstep_password="pw")
        assert s.missing_required() == ["ACTIONSTEP_USERNAME"]


class TestErrorTaxonomy:
    @pytest.mark.parametrize(
        "message",
        [
            "Target closed",
            "Target page, context or browser has been closed",
            "Browser has been closed",
            "Protocol error: Session closed. Most likely the page has been closed.",
        ],
    )
    def test_browser_crash_detected(self, message):
        assert is_browser_crash(RuntimeError(message))

    def test_ordinary_errors_not_crashes(self):
        assert not is_browser_crash(ElementNotFound("Could not find save button"))

    def test_configuration_errors_are_fatal(self):
        assert is_fatal(TwoFactorRequiredButNotConfigured())
        assert is_fatal(InvalidSecret("bad"))
        assert not is_fatal(OptionNotFound("Jane Smith", ["Smith, Jane (Staff)"]))


class TestCli:
    def test_totp_command_prints_codes(self, capsys):
        settings = Settings(_env_file=None, actionstep_totp_secret=TOTP_SECRET)
        assert show_totp(settings) == 0
        out = capsys.readouterr().out
        assert "Current code:" in out
        assert out.count("In ") == 3

    def test_totp_command_without_secret(self, capsys):
        settings = Settings(_env_file=None, actionstep_totp_secret=None)
        assert show_totp(settings) == 1
        assert "not set" in capsys.readouterr().out

    def test_unknown_command_exits(self):
        with pytest.raises(SystemExit):
            cli(["frobnicate"])
