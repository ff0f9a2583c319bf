"""Temperature sensor discovery for hostpulse."""

import logging
import re

import psutil

logger = logging.getLogger(__name__)

# Chips whose first reading is the whole-CPU temperature (e.g. Raspberry Pi, AMD)
PACKAGE_CHIPS = ("cpu_thermal", "cpu-thermal", "soc_thermal")
PACKAGE_LABELS = ("package", "tctl", "cpu-thermal", "cpu_thermal")

SensorKey = tuple[str, str]  # (chip, label)


def _read_sensors() -> dict[str, list]:
    """Read all temperature sensors, or nothing if the platform has none."""
    reader = getattr(psutil, "sensors_temperatures", None)
    if reader is None:
        return {}
    return reader() or {}


def _core_pattern(index: int) -> re.Pattern[str]:
    return re.compile(rf"\bCore {index}\b")


class TemperatureProbe:
    """
    Temperature capability of this host, resolved once at startup.

    Per-core sensors are matched to logical core indexes by labels of the
    form ``Core {index}``. A package or CPU-thermal sensor, if present,
    supplies the overall temperature.
    """

    def __init__(
        self,
        core_sensors: dict[int, SensorKey] | None = None,
        package_sensor: SensorKey | None = None,
    ) -> None:
        self._core_sensors = dict(core_sensors or {})
        self._package_sensor = package_sensor

    @property
    def has_core_temps(self) -> bool:
        """Check if at least one logical core has a matched sensor."""
        return bool(self._core_sensors)

    @property
    def has_package_temp(self) -> bool:
        """Check if a package or CPU-thermal sensor was found."""
        return self._package_sensor is not None

    @classmethod
    def unavailable(cls) -> "TemperatureProbe":
        """Create a probe for a host without temperature sensors."""
        return cls()

    @classmethod
    def detect(cls, core_count: int) -> "TemperatureProbe":
        """
        Match sensors to cores on this host.

        Any failure while reading sensors resolves to a probe without
        temperature support.
        """
        try:
            sensors = _read_sensors()
        except (psutil.Error, OSError) as exc:
            logger.info("Temperature sensors unavailable: %s", exc)
            return cls.unavailable()

        core_sensors: dict[int, SensorKey] = {}
        package_sensor: SensorKey | None = None

        for chip, entries in sensors.items():
            for entry in entries:
                label = entry.label or ""
                if package_sensor is None and (
                    chip.lower() in PACKAGE_CHIPS
                    or any(name in label.lower() for name in PACKAGE_LABELS)
                ):
                    package_sensor = (chip, label)
                for index in range(core_count):
                    if index not in core_sensors and _core_pattern(index).search(label):
                        core_sensors[index] = (chip, label)

        probe = cls(core_sensors, package_sensor)
        logger.info(
            "Temperature capability: %d/%d cores matched, package sensor %s",
            len(core_sensors),
            core_count,
            "found" if package_sensor else "missing",
        )
        return probe

    def read(self, core_count: int) -> tuple[list[float | None], float]:
        """
        Read current temperatures.

        Returns:
            A list with one optional reading per logical core and the package
            temperature (0.0 when unavailable).
        """
        per_core: list[float | None] = [None] * core_count
        if not self._core_sensors and self._package_sensor is None:
            return per_core, 0.0

        try:
            sensors = _read_sensors()
        except (psutil.Error, OSError) as exc:
            logger.debug("Temperature read failed: %s", exc)
            return per_core, 0.0

        current: dict[SensorKey, float] = {}
        for chip, entries in sensors.items():
            for entry in entries:
                current.setdefault((chip, entry.label or ""), entry.current)

        for index, key in self._core_sensors.items():
            if index < core_count:
                per_core[index] = current.get(key)

        package = 0.0
        if self._package_sensor is not None:
            package = current.get(self._package_sensor) or 0.0
        return per_core, package
