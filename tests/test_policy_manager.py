"""Tests for the YAML SLA policy manager."""

import pytest
from pydantic import ValidationError

from ticket_mirror.sla.infrastructure import SLAPolicyManager

POLICY_YAML = """
priorities:
  "1":
    target_hours: 2
    escalation_hours: 1
business_hours:
  start_hour: 9
  end_hour: 17
  days: [0, 1, 2, 3]
check_interval_minutes: 5
"""


class TestLoad:

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "sla_policy.yaml"
        path.write_text(POLICY_YAML)

        policy = SLAPolicyManager().load(path)

        assert policy.target_for(1).target_hours == 2
        assert policy.target_for(2).target_hours == 8
        assert policy.calendar().business_days == (0, 1, 2, 3)
        assert policy.check_interval_minutes == 5

    def test_missing_file_uses_defaults(self, tmp_path):
        manager = SLAPolicyManager(default_timezone="Europe/Berlin")

        policy = manager.load(tmp_path / "absent.yaml")

        assert policy.timezone == "Europe/Berlin"
        assert policy.target_for(1).target_hours == 4

    def test_default_timezone_when_file_sets_none(self, tmp_path):
        path = tmp_path / "sla_policy.yaml"
        path.write_text(POLICY_YAML)

        policy = SLAPolicyManager(default_timezone="America/New_York").load(path)

        assert policy.timezone == "America/New_York"

    def test_file_timezone_wins(self, tmp_path):
        path = tmp_path / "sla_policy.yaml"
        path.write_text(POLICY_YAML + "timezone: Asia/Tokyo\n")

        policy = SLAPolicyManager(default_timezone="UTC").load(path)

        assert policy.timezone == "Asia/Tokyo"

    def test_invalid_file_raises_on_first_load(self, tmp_path):
        path = tmp_path / "sla_policy.yaml"
        path.write_text("priorities:\n  '1':\n    target_hours: -3\n")

        with pytest.raises(ValidationError):
            SLAPolicyManager().load(path)

    def test_get_policy_before_load(self):
        with pytest.raises(RuntimeError):
            SLAPolicyManager().get_policy()


class TestReload:

    def test_reload_picks_up_changes(self, tmp_path):
        path = tmp_path / "sla_policy.yaml"
        path.write_text(POLICY_YAML)
        manager = SLAPolicyManager()
        manager.load(path)

        path.write_text(POLICY_YAML.replace("target_hours: 2", "target_hours: 3"))

        assert manager.reload() is True
        assert manager.get_policy().target_for(1).target_hours == 3

    def test_broken_reload_keeps_previous_policy(self, tmp_path):
        path = tmp_path / "sla_policy.yaml"
        path.write_text(POLICY_YAML)
        manager = SLAPolicyManager()
        manager.load(path)

        path.write_text("priorities: [unclosed")

        assert manager.reload() is False
        assert manager.get_policy().target_for(1).target_hours == 2

    def test_reload_before_load(self):
        assert SLAPolicyManager().reload() is False


class TestWatching:

    def test_start_before_load(self):
        with pytest.raises(RuntimeError):
            SLAPolicyManager().start_watching()

    def test_missing_file_is_not_watched(self, tmp_path):
        manager = SLAPolicyManager()
        manager.load(tmp_path / "absent.yaml")

        manager.start_watching()
        manager.stop_watching()

    def test_start_and_stop(self, tmp_path):
        path = tmp_path / "sla_policy.yaml"
        path.write_text(POLICY_YAML)
        manager = SLAPolicyManager()
        manager.load(path)

        manager.start_watching()
        manager.stop_watching()
        manager.stop_watching()
