# -*- coding: utf-8 -*-
"""
測試配置加載與校驗
"""
import pytest

from bot.latency import LatencyTracker
from config import Config, get_config


@pytest.fixture
def fresh_config():
    Config.reset_instance()
    yield
    Config.reset_instance()


def test_load_from_env(monkeypatch, fresh_config):
    monkeypatch.setenv("COMMAND_PREFIX", "?")
    monkeypatch.setenv("ADMIN_IDS", "a, b ,")
    monkeypatch.setenv("BOT_INSTALL_ALLOWED_HOSTS", "Example.com, raw.githubusercontent.com")
    monkeypatch.setenv("AI_API_BASE", "https://ai.example/")
    monkeypatch.setenv("MOMENTS_ENABLED", "false")
    monkeypatch.setenv("USER_DB_TYPE", "SQLITE")
    monkeypatch.setenv("PORT", "8080")

    config = get_config()

    assert config.bot_command_prefix == "?"
    assert config.bot_admin_users == ["a", "b"]
    assert config.bot_install_allowed_hosts == ["example.com", "raw.githubusercontent.com"]
    assert config.ai_api_base == "https://ai.example"
    assert config.moments_enabled is False
    assert config.user_db_type == "sqlite"
    assert config.port == 8080
    # 單例
    assert get_config() is config


def test_defaults():
    config = Config()
    assert config.bot_command_prefix == "!"
    assert config.max_message_length == 2000
    assert config.correlation_max_entries == 1000
    assert config.correlation_max_age == 86400
    assert config.timezone == "Asia/Dhaka"


def test_validate_fixes_invalid_values():
    config = Config(
        page_access_token="t",
        verify_token="v",
        max_message_length=0,
        moment_random_interval_hours=5,
    )
    warnings = config.validate()

    assert any("MAX_MESSAGE_LENGTH" in w for w in warnings)
    assert any("MOMENT_RANDOM_INTERVAL_HOURS" in w for w in warnings)
    assert config.max_message_length == 2000
    assert config.moment_random_interval_hours == 3


def test_validate_fixes_timezone_and_schedule_times():
    config = Config(
        timezone="Asia/Dhka",
        moment_morning_time="8:00",
        moment_night_time="25:61",
    )
    warnings = config.validate()

    assert any("TIMEZONE" in w for w in warnings)
    assert any("MOMENT_MORNING_TIME" in w for w in warnings)
    assert any("MOMENT_NIGHT_TIME" in w for w in warnings)
    assert config.timezone == "Asia/Dhaka"
    assert config.moment_morning_time == "08:00"
    assert config.moment_night_time == "22:00"


def test_validate_keeps_valid_schedule_settings():
    config = Config(timezone="Europe/London", moment_morning_time="07:30", moment_night_time="23:00")
    warnings = config.validate()

    assert not any("TIMEZONE" in w or "MOMENT_" in w for w in warnings)
    assert config.timezone == "Europe/London"
    assert config.moment_morning_time == "07:30"


def test_validate_reports_missing_tokens():
    warnings = Config().validate()
    assert any("PAGE_ACCESS_TOKEN" in w for w in warnings)
    assert any("VERIFY_TOKEN" in w for w in warnings)


def test_get_db_url(tmp_path):
    assert Config(database_url="sqlite:///:memory:").get_db_url() == "sqlite:///:memory:"

    url = Config(database_path=str(tmp_path / "db" / "users.sqlite")).get_db_url()
    assert url.startswith("sqlite:///")
    assert (tmp_path / "db").is_dir()


def test_latency_window():
    tracker = LatencyTracker(window_size=3)
    for value in (10, 20, 30, 40):
        tracker.record("u1", value)

    stats = tracker.get_stats("u1")
    assert stats.last_ms == 40
    assert stats.samples == 3
    assert stats.average_ms == pytest.approx(30)
    assert tracker.get_stats("u2") is None

    tracker.reset("u1")
    assert tracker.get_stats("u1") is None
