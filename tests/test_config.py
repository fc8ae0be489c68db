import json
from unittest.mock import patch

import bcrypt

from coinbet import config


def write_config(tmp_path, data):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(data))
    return path


def test_env_overrides_are_not_written_back(tmp_path, monkeypatch):
    path = write_config(
        tmp_path,
        {"security": {"admin_username": "boss", "admin_password_hash": "hunter2"}},
    )
    monkeypatch.setenv("SECRET_KEY", "from-the-environment")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.delenv("ADMIN_PASSWORD", raising=False)
    monkeypatch.delenv("ADMIN_USERNAME", raising=False)

    with patch.object(config, "PROJECT_ROOT", tmp_path):
        loaded = config.load_config()

    on_disk = json.loads(path.read_text())
    stored_hash = on_disk["security"]["admin_password_hash"]
    assert stored_hash.startswith("$2") and len(stored_hash) == 60
    assert bcrypt.checkpw(b"hunter2", stored_hash.encode("utf-8"))
    assert "secret_key" not in on_disk["security"]
    assert "logging" not in on_disk

    assert loaded.security.secret_key == "from-the-environment"
    assert loaded.logging.level == "DEBUG"
    assert loaded.security.admin_username == "boss"
    assert loaded.security.admin_password_hash == stored_hash


def test_hashed_file_is_left_alone(tmp_path, monkeypatch):
    hashed = bcrypt.hashpw(b"hunter2", bcrypt.gensalt(rounds=4)).decode("utf-8")
    path = write_config(tmp_path, {"security": {"admin_password_hash": hashed}})
    before = path.read_text()
    monkeypatch.setenv("SECRET_KEY", "from-the-environment")

    with patch.object(config, "PROJECT_ROOT", tmp_path):
        config.load_config()

    assert path.read_text() == before


def test_env_password_is_hashed_in_memory_only(tmp_path, monkeypatch):
    path = write_config(tmp_path, {"server": {"port": 9000}})
    monkeypatch.setenv("ADMIN_PASSWORD", "from-env")

    with patch.object(config, "PROJECT_ROOT", tmp_path):
        loaded = config.load_config()

    assert bcrypt.checkpw(b"from-env", loaded.security.admin_password_hash.encode("utf-8"))
    assert json.loads(path.read_text()) == {"server": {"port": 9000}}
