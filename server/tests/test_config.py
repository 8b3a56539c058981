from __future__ import annotations

import importlib

import animator.config as config


def test_settings_read_poll_knobs(monkeypatch):
    monkeypatch.setenv("VEO_POLL_INTERVAL_SECONDS", "2.5")
    monkeypatch.setenv("VEO_MAX_POLLS", "30")
    monkeypatch.setenv("VEO_POLL_TIMEOUT_SECONDS", "")

    try:
        reloaded = importlib.reload(config)
        assert reloaded.settings.poll_interval_seconds == 2.5
        assert reloaded.settings.max_polls == 30
        assert reloaded.settings.poll_timeout_seconds is None
    finally:
        monkeypatch.undo()
        importlib.reload(config)


def test_settings_default_to_unbounded_ten_second_polling(monkeypatch):
    for name in ("VEO_POLL_INTERVAL_SECONDS", "VEO_MAX_POLLS", "VEO_POLL_TIMEOUT_SECONDS", "VEO_MODEL"):
        monkeypatch.delenv(name, raising=False)

    try:
        reloaded = importlib.reload(config)
        assert reloaded.settings.poll_interval_seconds == 10
        assert reloaded.settings.max_polls is None
        assert reloaded.settings.poll_timeout_seconds is None
        assert reloaded.settings.veo_model == "veo-3.1-fast-generate-preview"
    finally:
        monkeypatch.undo()
        importlib.reload(config)


def test_settings_fall_back_to_api_key_variable(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.setenv("API_KEY", "fallback-key")

    try:
        reloaded = importlib.reload(config)
        assert reloaded.settings.gemini_api_key == "fallback-key"
    finally:
        monkeypatch.undo()
        importlib.reload(config)


def test_settings_read_image_size_cap(monkeypatch):
    monkeypatch.setenv("MAX_IMAGE_BYTES", "1024")

    try:
        reloaded = importlib.reload(config)
        assert reloaded.settings.max_image_bytes == 1024
    finally:
        monkeypatch.undo()
        importlib.reload(config)
