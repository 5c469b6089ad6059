import logging

import app.config.loader as loader
from app.utils.logging_config import build_logging_config, setup_logging


def _settings(tmp_path, **overrides):
    settings = {
        "log_dir": str(tmp_path / "logs"),
        "level": "DEBUG",
        "max_bytes": 1024,
        "backup_count": 2,
    }
    settings.update(overrides)
    return settings


def test_audit_logger_writes_its_own_file(tmp_path):
    config = build_logging_config(_settings(tmp_path))

    audit = config["loggers"]["audit"]
    assert "file_audit" in audit["handlers"]
    assert audit["propagate"] is False
    assert config["handlers"]["file_audit"]["filename"].endswith("audit.log")
    assert config["handlers"]["file_error"]["level"] == "ERROR"
    assert config["handlers"]["file_app"]["backupCount"] == 2


def test_setup_logging_creates_the_log_directory(tmp_path):
    settings = _settings(tmp_path, log_dir=str(tmp_path / "nested" / "logs"))
    names = ("", "app", "audit", "auth_module", "database")
    before = {name: list(logging.getLogger(name).handlers) for name in names}
    try:
        setup_logging(settings)
        logging.getLogger("audit").info("join decision recorded")
        for handler in logging.getLogger("audit").handlers:
            handler.flush()

        assert (tmp_path / "nested" / "logs").is_dir()
        audit_log = tmp_path / "nested" / "logs" / "audit.log"
        assert "join decision recorded" in audit_log.read_text(encoding="utf-8")
    finally:
        for name in names:
            logger = logging.getLogger(name)
            for handler in list(logger.handlers):
                if handler not in before[name]:
                    logger.removeHandler(handler)
                    handler.close()


def test_logging_settings_from_env(monkeypatch, tmp_path):
    monkeypatch.setattr(loader, "_CONFIG_PATH", tmp_path / "config.yaml")
    monkeypatch.setenv("MEETGATE_LOG_DIR", str(tmp_path / "x"))
    monkeypatch.setenv("LOG_LEVEL", "warning")
    monkeypatch.setenv("LOG_BACKUP_COUNT", "0")
    monkeypatch.delenv("LOG_MAX_BYTES", raising=False)

    settings = loader.get_logging_settings()

    assert settings["log_dir"] == str(tmp_path / "x")
    assert settings["level"] == "WARNING"
    assert settings["backup_count"] == 0
    assert settings["max_bytes"] == 5 * 1024 * 1024
