"""
Tests for the butlerctl CLI.
"""

import json

import pytest

from adb_butler import __version__
from adb_butler.cli import butlerctl
from adb_butler.core import config as config_module
from adb_butler.events.emitter import EventEmitter
from adb_butler.events.models import EventType

from fakes import InMemoryDirectoryStore, directory_record
from test_maintenance import make_executor
from test_service import FakeLoki, build


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "HOSTNAME",
        "LOKI_URL",
        "STF_PROVIDER_PUBLIC_IP",
        "STF_PROVIDER_NOTE",
        config_module.CONFIG_FILE_ENV,
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(config_module, "_config", None)


class TestParser:
    """Test argument parsing."""

    def test_no_command_prints_help(self, capsys):
        assert butlerctl.main([]) == 0
        assert "reconcile" in capsys.readouterr().out

    def test_version(self, capsys):
        assert butlerctl.main(["version"]) == 0
        assert __version__ in capsys.readouterr().out

    def test_reconcile_flags(self):
        args = butlerctl.create_parser().parse_args(["reconcile", "--dry-run", "--json"])
        assert args.dry_run and args.json


class TestCommands:
    """Test command handlers over in-memory authorities."""

    def test_reconcile_json(self, monkeypatch, capsys):
        service, _, _, store = build(records=[directory_record("203.0.113.5:10001")])
        monkeypatch.setattr(butlerctl, "build_service", lambda config, dry_run=None: service)

        assert butlerctl.main(["reconcile", "--json"]) == 0

        summary = json.loads(capsys.readouterr().out)
        assert summary["status"] == "completed"
        assert summary["outcomes"][0]["status"] == "recovered"
        assert store.records == []

    def test_reconcile_text(self, monkeypatch, capsys):
        service, _, _, _ = build(records=[directory_record("203.0.113.5:10001")])
        monkeypatch.setattr(butlerctl, "build_service", lambda config, dry_run=None: service)

        assert butlerctl.main(["reconcile"]) == 0

        out = capsys.readouterr().out
        assert "[RECOVERED] DeleteDirectoryRecord(203.0.113.5:10001)" in out
        assert "1 recovered" in out

    def test_inventory_json(self, monkeypatch, capsys):
        service, _, _, _ = build(records=[directory_record("R58M123ABC")])
        monkeypatch.setattr(butlerctl, "build_service", lambda config, dry_run=None: service)

        assert butlerctl.main(["inventory", "--json"]) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["snapshots"]["directory"]["R58M123ABC"]["online"] is True
        assert data["unavailable"] == {}

    def test_clean_emulators_without_ip_is_a_no_op(self, monkeypatch, capsys):
        store = InMemoryDirectoryStore([directory_record("203.0.113.5:10001")])
        monkeypatch.setattr(butlerctl, "build_executor", lambda config, dry_run=None: make_executor(store))

        assert butlerctl.main(["clean-emulators"]) == 0

        assert "IP is not selected" in capsys.readouterr().out
        assert len(store.records) == 1

    def test_clean_emulators(self, monkeypatch, capsys):
        monkeypatch.setenv("STF_PROVIDER_PUBLIC_IP", "203.0.113.5")
        store = InMemoryDirectoryStore([directory_record("203.0.113.5:10001")])
        monkeypatch.setattr(butlerctl, "build_executor", lambda config, dry_run=None: make_executor(store))

        assert butlerctl.main(["clean-emulators"]) == 0

        assert "cleaned devices: 1" in capsys.readouterr().out

    def test_annotate_without_note(self, monkeypatch, capsys):
        monkeypatch.setenv("HOSTNAME", "provider-01")
        store = InMemoryDirectoryStore([directory_record("R58M123ABC")])
        monkeypatch.setattr(butlerctl, "build_executor", lambda config, dry_run=None: make_executor(store))

        assert butlerctl.main(["annotate"]) == 0

        assert "Note is not provided. Exiting" in capsys.readouterr().out

    def test_annotate_with_note_flag(self, monkeypatch, capsys):
        monkeypatch.setenv("HOSTNAME", "provider-01")
        store = InMemoryDirectoryStore([directory_record("R58M123ABC")])
        monkeypatch.setattr(butlerctl, "build_executor", lambda config, dry_run=None: make_executor(store))

        assert butlerctl.main(["annotate", "--note", "rack 4"]) == 0

        assert "Note rack 4 added to all devices from provider-01" in capsys.readouterr().out
        assert store.records[0]["notes"] == "rack 4"

    def test_maintenance_result_is_pushed_when_loki_is_configured(self, monkeypatch, capsys):
        monkeypatch.setenv("STF_PROVIDER_PUBLIC_IP", "203.0.113.5")
        monkeypatch.setenv("HOSTNAME", "provider-01")
        monkeypatch.setenv("LOKI_URL", "http://loki:3100")
        loki = FakeLoki()
        store = InMemoryDirectoryStore([directory_record("203.0.113.5:10001")])
        monkeypatch.setattr(butlerctl, "build_executor", lambda config, dry_run=None: make_executor(store))
        monkeypatch.setattr(
            butlerctl, "EventEmitter", lambda loki_url, host: EventEmitter(loki_client=loki, host=host)
        )

        assert butlerctl.main(["clean-emulators"]) == 0

        assert [e.event_type for e in loki.pushed] == [EventType.MAINTENANCE]
        assert loki.pushed[0].reason == "cleaned devices: 1"
        assert loki.pushed[0].host == "provider-01"

    def test_no_push_without_loki(self, monkeypatch, capsys):
        store = InMemoryDirectoryStore([directory_record("203.0.113.5:10001")])
        monkeypatch.setattr(butlerctl, "build_executor", lambda config, dry_run=None: make_executor(store))

        def unexpected(**kwargs):
            raise AssertionError("emitter created without LOKI_URL")

        monkeypatch.setattr(butlerctl, "EventEmitter", unexpected)

        assert butlerctl.main(["clean-emulators"]) == 0
