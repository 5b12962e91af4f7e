"""Settings flow into the wired services."""

from __future__ import annotations

import pytest
from pydantic import ValidationError
from pydantic_settings import SettingsConfigDict

from fieldops.config import Settings, get_settings
from fieldops.main import Services
from fieldops.repos.memory import MemoryStore
from tests.helpers import add_technician, add_ticket, at


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("FIELDOPS_DEFAULT_DURATION_MINUTES", "45")
    monkeypatch.setenv("FIELDOPS_SCHEDULE_TIMEZONE", "America/Chicago")

    settings = Settings()

    assert settings.default_duration_minutes == 45
    assert settings.schedule_timezone == "America/Chicago"


def test_get_settings_prefers_env_over_config_file(monkeypatch):
    monkeypatch.setenv("FIELDOPS_DEFAULT_DURATION_MINUTES", "45")
    monkeypatch.setenv("FIELDOPS_SEED_DEMO_DATA", "true")
    get_settings.cache_clear()
    try:
        settings = get_settings()
    finally:
        get_settings.cache_clear()

    assert settings.default_duration_minutes == 45
    assert settings.seed_demo_data is True


def test_config_file_supplies_defaults_under_env(tmp_path, monkeypatch):
    config = tmp_path / "config.yaml"
    config.write_text("default_duration_minutes: 90\nschedule_timezone: Europe/Berlin\n")
    monkeypatch.delenv("FIELDOPS_DEFAULT_DURATION_MINUTES", raising=False)
    monkeypatch.delenv("FIELDOPS_SCHEDULE_TIMEZONE", raising=False)

    class FileSettings(Settings):
        model_config = SettingsConfigDict(yaml_file=config)

    assert FileSettings().default_duration_minutes == 90
    assert FileSettings().schedule_timezone == "Europe/Berlin"

    monkeypatch.setenv("FIELDOPS_SCHEDULE_TIMEZONE", "Asia/Tokyo")
    overridden = FileSettings()
    assert overridden.schedule_timezone == "Asia/Tokyo"
    assert overridden.default_duration_minutes == 90


def test_shipped_config_does_not_seed(monkeypatch):
    monkeypatch.delenv("FIELDOPS_SEED_DEMO_DATA", raising=False)
    assert Settings().seed_demo_data is False


def test_duration_must_be_positive():
    with pytest.raises(ValidationError):
        Settings(default_duration_minutes=0)


def test_unknown_timezone_is_rejected_at_wiring():
    with pytest.raises(ValueError):
        Services(MemoryStore(), Settings(schedule_timezone="Mars/Olympus_Mons"))


def test_custom_parts_summary(clock):
    store = MemoryStore()
    services = Services(store, Settings(parts_hold_summary="Awaiting vendor"), clock=clock)
    ticket = add_ticket(store, "A", add_technician(store), at(9))

    result = services.holds.hold_for_parts(
        ticket.id, urgency="medium", parts=[{"part_id": "BLT-7", "quantity": 1}]
    )

    assert store.holds.get(result.hold_id).summary == "Awaiting vendor"


def test_default_duration_setting_shapes_commitments(clock):
    store = MemoryStore(default_duration=30)
    services = Services(store, Settings(default_duration_minutes=30), clock=clock)
    tech = add_technician(store)
    add_ticket(store, "A", tech, at(9))

    assert not services.detector.check_conflict(tech.id, at(9, 30), at(10)).has_conflict
    assert services.detector.check_conflict(tech.id, at(9, 15), at(10)).has_conflict
