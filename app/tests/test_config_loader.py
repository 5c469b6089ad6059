from pathlib import Path

import app.config.loader as loader


def _write_config(path: Path, content: str) -> None:
    path.write_text(content, encoding="utf-8")


def test_load_config_missing_file_returns_empty(monkeypatch, tmp_path):
    monkeypatch.setattr(loader, "_CONFIG_PATH", tmp_path / "config.yaml")
    assert loader.load_config() == {}


def test_load_config_non_mapping_returns_empty(monkeypatch, tmp_path):
    config_path = tmp_path / "config.yaml"
    _write_config(config_path, "- just\n- a list\n")
    monkeypatch.setattr(loader, "_CONFIG_PATH", config_path)
    assert loader.load_config() == {}


def test_schedule_defaults_when_missing(monkeypatch, tmp_path):
    monkeypatch.setattr(loader, "_CONFIG_PATH", tmp_path / "config.yaml")
    monkeypatch.delenv("MEETGATE_GRACE_PERIOD_MINUTES", raising=False)
    monkeypatch.delenv("MEETGATE_PUBLIC_BASE_URL", raising=False)

    settings = loader.get_schedule_settings()

    assert settings["grace_period_minutes"] == 15
    assert settings["default_allow_early_join_min"] == 10
    assert settings["join_key_bytes"] == 30
    assert settings["public_base_url"] == "http://localhost:8000"


def test_schedule_coercion(monkeypatch, tmp_path):
    config_path = tmp_path / "config.yaml"
    _write_config(
        config_path,
        "\n".join(
            [
                "schedule:",
                "  grace_period_minutes: \"abc\"",
                "  default_allow_early_join_min: \"5\"",
                "  join_key_bytes: 8",
                "  public_base_url: \"https://meet.example.com/\"",
            ]
        ),
    )
    monkeypatch.setattr(loader, "_CONFIG_PATH", config_path)
    monkeypatch.delenv("MEETGATE_GRACE_PERIOD_MINUTES", raising=False)
    monkeypatch.delenv("MEETGATE_PUBLIC_BASE_URL", raising=False)

    settings = loader.get_schedule_settings()

    assert settings["grace_period_minutes"] == 15
    assert settings["default_allow_early_join_min"] == 5
    assert settings["join_key_bytes"] == 24
    assert settings["public_base_url"] == "https://meet.example.com"


def test_schedule_env_overrides(monkeypatch, tmp_path):
    monkeypatch.setattr(loader, "_CONFIG_PATH", tmp_path / "config.yaml")
    monkeypatch.setenv("MEETGATE_GRACE_PERIOD_MINUTES", "30")
    monkeypatch.setenv("MEETGATE_PUBLIC_BASE_URL", "https://join.example.org")

    settings = loader.get_schedule_settings()

    assert settings["grace_period_minutes"] == 30
    assert settings["public_base_url"] == "https://join.example.org"


def test_invite_settings(monkeypatch, tmp_path):
    config_path = tmp_path / "config.yaml"
    _write_config(
        config_path,
        "\n".join(
            [
                "invites:",
                "  key_id: \"bad:kid\"",
                "  default_ttl_minutes: -3",
                "  retired_keys:",
                "    k0: old-secret",
                "    \"x:y\": ignored",
            ]
        ),
    )
    monkeypatch.setattr(loader, "_CONFIG_PATH", config_path)
    monkeypatch.delenv("MEETGATE_INVITE_KEY_ID", raising=False)
    monkeypatch.setenv("MEETGATE_INVITE_SIGNING_SECRET", "from-env-secret")

    settings = loader.get_invite_settings()

    assert settings["key_id"] == "k1"
    assert settings["default_ttl_minutes"] == 1440
    assert settings["retired_keys"] == {"k0": "old-secret"}
    assert settings["signing_secret"] == "from-env-secret"


def test_media_settings_env_overrides(monkeypatch, tmp_path):
    monkeypatch.setattr(loader, "_CONFIG_PATH", tmp_path / "config.yaml")
    monkeypatch.setenv("MEETGATE_MEDIA_API_KEY", "key-from-env")
    monkeypatch.delenv("MEETGATE_MEDIA_API_SECRET", raising=False)
    monkeypatch.delenv("MEETGATE_MEDIA_WS_URL", raising=False)

    settings = loader.get_media_settings()

    assert settings["api_key"] == "key-from-env"
    assert settings["ws_url"] == "ws://localhost:7880"
    assert settings["grant_ttl_minutes"] == 360


def test_subscription_settings_merge_plan_overrides(monkeypatch, tmp_path):
    config_path = tmp_path / "config.yaml"
    _write_config(
        config_path,
        "\n".join(
            [
                "subscriptions:",
                "  enforced: \"yes\"",
                "  default_tier: pro",
                "  plans:",
                "    free:",
                "      max_participants_per_meeting: 3",
                "    team:",
                "      max_meeting_duration_minutes: 90",
                "      max_participants_per_meeting: null",
            ]
        ),
    )
    monkeypatch.setattr(loader, "_CONFIG_PATH", config_path)
    monkeypatch.delenv("MEETGATE_SUBSCRIPTIONS_ENFORCED", raising=False)

    settings = loader.get_subscription_settings()

    assert settings["enforced"] is True
    assert settings["default_tier"] == "pro"
    assert settings["plans"]["free"] == {
        "max_meeting_duration_minutes": 20,
        "max_participants_per_meeting": 3,
    }
    assert settings["plans"]["team"] == {
        "max_meeting_duration_minutes": 90,
        "max_participants_per_meeting": None,
    }


def test_production_mode_flag(monkeypatch):
    monkeypatch.setenv("MEETGATE_ENV", "production")
    assert loader.is_production_mode() is True
    monkeypatch.setenv("MEETGATE_ENV", "dev")
    assert loader.is_production_mode() is False
