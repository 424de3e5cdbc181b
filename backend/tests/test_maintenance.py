"""
Unit Tests for the maintenance CLI

Run with: pytest tests/test_maintenance.py -v
"""

import json

import pytest

import maintenance


class TestParser:

    def test_commands(self):
        parser = maintenance.build_parser()

        assert parser.parse_args(["reconcile", "--no-write-counters"]).no_write_counters is True
        assert parser.parse_args(["backfill", "--legacy-file", "users.json"]).legacy_file == "users.json"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            maintenance.build_parser().parse_args([])


class TestRun:

    @pytest.fixture(autouse=True)
    def database(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'portal.db'}")

    @pytest.mark.asyncio
    async def test_backfill_then_reconcile(self, tmp_path, capsys):
        legacy_file = tmp_path / "users.json"
        legacy_file.write_text(json.dumps([
            {"_id": "1", "email": "dev@legacy.io", "password": "dev-secret", "role": "developer"},
        ]))

        assert await maintenance.run(["backfill", "--legacy-file", str(legacy_file)]) == 0
        report = json.loads(capsys.readouterr().out)
        assert report["migrated"]["developer"] == 1
        assert report["privileged"] == "created"

        assert await maintenance.run(["reconcile"]) == 0
        report = json.loads(capsys.readouterr().out)
        assert report["consistent"] is True
        assert report["counters_written"] == 1
