import os

import pytest
from sqlmodel import Session, select

from dbm_api.config import get_settings, load_config, sync_static_connections
from dbm_api.models import Connection


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("DBM_CONFIG", "DBM_DATA_DIR", "DATABASE_URL", "BACKUP_STORAGE_PATH"):
        monkeypatch.delenv(name, raising=False)


def test_missing_config_file_yields_empty_config(tmp_path):
    assert load_config(str(tmp_path / "absent.yaml")) == {}


def test_invalid_yaml_yields_empty_config(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("global: [unclosed\n")
    assert load_config(str(path)) == {}


def test_config_path_from_environment(tmp_path, monkeypatch):
    path = tmp_path / "custom.yaml"
    path.write_text("global:\n  max_parallel_jobs: 3\n")
    monkeypatch.setenv("DBM_CONFIG", str(path))

    assert load_config() == {"global": {"max_parallel_jobs": 3}}


def test_settings_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv("DBM_DATA_DIR", str(tmp_path))

    settings = get_settings({})

    assert settings.data_directory == str(tmp_path)
    assert settings.database_url == f"sqlite:///{os.path.join(str(tmp_path), 'db.sqlite')}"
    assert settings.backup_directory == os.path.join(str(tmp_path), "backups")
    assert settings.max_parallel_jobs == 10
    assert settings.timeout_seconds == 3600
    assert settings.default_postgresql_version == "16"
    assert settings.docker_enabled is True


def test_settings_from_yaml(tmp_path, monkeypatch):
    monkeypatch.setenv("DBM_DATA_DIR", str(tmp_path))

    settings = get_settings({
        "global": {"max_parallel_jobs": 4, "database_url": "sqlite:///other.db"},
        "backup": {"directory": "/srv/backups", "timeout_seconds": 120,
                   "default_postgresql_version": 15, "docker_enabled": False},
    })

    assert settings.max_parallel_jobs == 4
    assert settings.database_url == "sqlite:///other.db"
    assert settings.backup_directory == "/srv/backups"
    assert settings.timeout_seconds == 120
    assert settings.default_postgresql_version == "15"
    assert settings.docker_enabled is False


def test_environment_overrides_yaml(tmp_path, monkeypatch):
    monkeypatch.setenv("BACKUP_STORAGE_PATH", "/mnt/backups")
    monkeypatch.setenv("DATABASE_URL", "postgresql://dbm@localhost/dbm")

    settings = get_settings({"backup": {"directory": "/srv/backups"}})

    assert settings.backup_directory == "/mnt/backups"
    assert settings.database_url == "postgresql://dbm@localhost/dbm"


def _static_connection(**overrides):
    conf = {"id": "main-pg", "name": "Main", "type": "postgresql", "host": "db", "port": 5432,
            "database": "app", "username_var": "PG_USER", "password_var": "PG_PASS"}
    conf.update(overrides)
    return conf


def test_sync_creates_and_updates_static_connections(engine, monkeypatch):
    monkeypatch.setenv("PG_USER", "backup")
    monkeypatch.setenv("PG_PASS", "s3cret")

    with Session(engine) as session:
        sync_static_connections(session, {"connections": [_static_connection(postgresql_version=15)]})
        sync_static_connections(session, {"connections": [_static_connection(host="db2")]})

        [connection] = session.exec(select(Connection)).all()
        assert connection.config_id == "main-pg"
        assert connection.host == "db2"
        assert connection.username == "backup"
        assert connection.password == "s3cret"
        assert connection.postgresql_version == "15"


def test_sync_skips_entries_without_credentials_or_id(engine):
    with Session(engine) as session:
        sync_static_connections(session, {"connections": [
            _static_connection(password_var="UNSET_PASSWORD_VAR"),
            {"name": "no id", "username": "u", "password": "p"},
        ]})

        assert session.exec(select(Connection)).all() == []


def test_sync_rejects_duplicate_ids(engine):
    with Session(engine) as session:
        with pytest.raises(ValueError):
            sync_static_connections(session, {"connections": [
                _static_connection(username="u", password="p"),
                _static_connection(username="u", password="p"),
            ]})
