from unittest.mock import patch

import pytest

from workflow_api import db
from workflow_api.config import env, env_flag


class TestEnv:
    def test_value_from_environment(self, monkeypatch):
        monkeypatch.setenv("DB_HOST", "db.internal")
        assert env("DB_HOST", "postgres") == "db.internal"

    def test_default_is_used(self, monkeypatch):
        monkeypatch.delenv("DB_HOST", raising=False)
        assert env("DB_HOST", "postgres") == "postgres"

    def test_missing_value_raises(self, monkeypatch):
        monkeypatch.setenv("DB_PASSWORD", "")
        with pytest.raises(RuntimeError, match="Missing env var: DB_PASSWORD"):
            env("DB_PASSWORD")

    @pytest.mark.parametrize("raw,expected", [("true", True), (" ON ", True), ("1", True), ("no", False)])
    def test_flags(self, monkeypatch, raw, expected):
        monkeypatch.setenv("ARCHIVE_TASKS", raw)
        assert env_flag("ARCHIVE_TASKS") is expected


def test_connection_uses_db_settings(monkeypatch):
    monkeypatch.setenv("DB_HOST", "db.internal")
    monkeypatch.delenv("DB_NAME", raising=False)
    with patch.object(db.psycopg2, "connect") as connect:
        db.get_connection()
    kwargs = connect.call_args.kwargs
    assert kwargs["host"] == "db.internal"
    assert kwargs["database"] == "camunda"
