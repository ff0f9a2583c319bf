"""Tests for temperature sensor discovery."""

from collections import namedtuple

import psutil
import pytest

from hostpulse.sensors import TemperatureProbe

shwtemp = namedtuple("shwtemp", ["label", "current", "high", "critical"])

CORETEMP = {
    "coretemp": [
        shwtemp("Package id 0", 55.0, 80.0, 100.0),
        shwtemp("Core 0", 50.0, 80.0, 100.0),
        shwtemp("Core 1", 52.0, 80.0, 100.0),
        shwtemp("Core 10", 60.0, 80.0, 100.0),
    ],
    "acpitz": [shwtemp("", 27.8, 105.0, 105.0)],
}


@pytest.fixture
def sensors(monkeypatch):
    """Install a fake sensors_temperatures returning a mutable reading set."""
    readings = {chip: list(entries) for chip, entries in CORETEMP.items()}
    monkeypatch.setattr(psutil, "sensors_temperatures", lambda: readings, raising=False)
    return readings


def test_detect_matches_cores_and_package(sensors):
    """Test cores are matched by 'Core {index}' labels."""
    probe = TemperatureProbe.detect(core_count=2)

    assert probe.has_core_temps
    assert probe.has_package_temp

    per_core, package = probe.read(2)
    assert per_core == [50.0, 52.0]
    assert package == 55.0


def test_core_index_is_not_a_prefix_match(sensors):
    """Test 'Core 1' does not match 'Core 10'."""
    sensors["coretemp"] = [shwtemp("Core 10", 60.0, None, None)]
    probe = TemperatureProbe.detect(core_count=2)

    assert not probe.has_core_temps


def test_unmatched_cores_are_none(sensors):
    """Test logical cores without a sensor report no temperature."""
    probe = TemperatureProbe.detect(core_count=4)

    per_core, _ = probe.read(4)
    assert per_core == [50.0, 52.0, None, None]


def test_read_uses_current_values(sensors):
    """Test readings are refreshed on every read."""
    probe = TemperatureProbe.detect(core_count=1)
    sensors["coretemp"] = [
        shwtemp("Package id 0", 70.0, None, None),
        shwtemp("Core 0", 65.0, None, None),
    ]

    assert probe.read(1) == ([65.0], 70.0)


def test_cpu_thermal_zone_is_package(monkeypatch):
    """Test a SoC thermal zone supplies the package temperature."""
    monkeypatch.setattr(
        psutil,
        "sensors_temperatures",
        lambda: {"cpu_thermal": [shwtemp("", 48.3, None, None)]},
        raising=False,
    )

    probe = TemperatureProbe.detect(core_count=4)

    assert not probe.has_core_temps
    assert probe.read(4) == ([None] * 4, 48.3)


def test_platform_without_sensors(monkeypatch):
    """Test platforms where psutil has no sensors_temperatures."""
    monkeypatch.delattr(psutil, "sensors_temperatures", raising=False)

    probe = TemperatureProbe.detect(core_count=2)

    assert not probe.has_core_temps
    assert probe.read(2) == ([None, None], 0.0)


def test_sensor_errors_disable_capability(monkeypatch):
    """Test sensor read errors resolve to no temperature support."""

    def broken():
        raise OSError("no hwmon")

    monkeypatch.setattr(psutil, "sensors_temperatures", broken, raising=False)

    probe = TemperatureProbe.detect(core_count=2)
    assert not probe.has_core_temps
    assert not probe.has_package_temp


def test_read_failure_after_detection(sensors, monkeypatch):
    """Test a failing read yields empty readings for that cycle."""
    probe = TemperatureProbe.detect(core_count=2)

    def broken():
        raise OSError("sensor vanished")

    monkeypatch.setattr(psutil, "sensors_temperatures", broken, raising=False)
    assert probe.read(2) == ([None, None], 0.0)


def test_unavailable_probe():
    """Test the explicit no-temperature probe."""
    probe = TemperatureProbe.unavailable()
    assert probe.read(3) == ([None, None, None], 0.0)
