"""
Environment providers - live device state read by constraint checkers.

Every reading may return None when the state is unknown on this host;
constraint checkers treat an unknown reading as satisfied.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

import psutil

logger = logging.getLogger(__name__)


class Environment(ABC):
    """Read-only view of device state."""

    @abstractmethod
    def battery_level(self) -> Optional[int]:
        """Battery charge in percent (0-100)."""
        pass

    @abstractmethod
    def is_charging(self) -> Optional[bool]:
        pass

    @abstractmethod
    def now(self) -> datetime:
        """Local wall-clock time."""
        pass

    @abstractmethod
    def screen_on(self) -> Optional[bool]:
        pass

    @abstractmethod
    def device_locked(self) -> Optional[bool]:
        pass

    @abstractmethod
    def wifi_connected(self) -> Optional[bool]:
        pass

    @abstractmethod
    def wifi_ssid(self) -> Optional[str]:
        pass

    @abstractmethod
    def mobile_data_active(self) -> Optional[bool]:
        pass

    @abstractmethod
    def bluetooth_connected(self) -> Optional[bool]:
        pass

    @abstractmethod
    def airplane_mode(self) -> Optional[bool]:
        pass

    @abstractmethod
    def headphones_connected(self) -> Optional[bool]:
        pass

    @abstractmethod
    def do_not_disturb(self) -> Optional[bool]:
        pass


class StaticEnvironment(Environment):
    """
    Environment with fixed readings.

    Used by tests and by the CLI's --battery / --charging overrides.
    Unset readings are None (unknown). now defaults to the real clock.
    """

    def __init__(
        self,
        battery_level: Optional[int] = None,
        is_charging: Optional[bool] = None,
        now: Optional[datetime] = None,
        screen_on: Optional[bool] = None,
        device_locked: Optional[bool] = None,
        wifi_connected: Optional[bool] = None,
        wifi_ssid: Optional[str] = None,
        mobile_data_active: Optional[bool] = None,
        bluetooth_connected: Optional[bool] = None,
        airplane_mode: Optional[bool] = None,
        headphones_connected: Optional[bool] = None,
        do_not_disturb: Optional[bool] = None,
    ):
        self._battery_level = battery_level
        self._is_charging = is_charging
        self._now = now
        self._screen_on = screen_on
        self._device_locked = device_locked
        self._wifi_connected = wifi_connected
        self._wifi_ssid = wifi_ssid
        self._mobile_data_active = mobile_data_active
        self._bluetooth_connected = bluetooth_connected
        self._airplane_mode = airplane_mode
        self._headphones_connected = headphones_connected
        self._do_not_disturb = do_not_disturb

    def battery_level(self) -> Optional[int]:
        return self._battery_level

    def is_charging(self) -> Optional[bool]:
        return self._is_charging

    def now(self) -> datetime:
        return self._now or datetime.now()

    def screen_on(self) -> Optional[bool]:
        return self._screen_on

    def device_locked(self) -> Optional[bool]:
        return self._device_locked

    def wifi_connected(self) -> Optional[bool]:
        return self._wifi_connected

    def wifi_ssid(self) -> Optional[str]:
        return self._wifi_ssid

    def mobile_data_active(self) -> Optional[bool]:
        return self._mobile_data_active

    def bluetooth_connected(self) -> Optional[bool]:
        return self._bluetooth_connected

    def airplane_mode(self) -> Optional[bool]:
        return self._airplane_mode

    def headphones_connected(self) -> Optional[bool]:
        return self._headphones_connected

    def do_not_disturb(self) -> Optional[bool]:
        return self._do_not_disturb


class SystemEnvironment(Environment):
    """
    Host readings through psutil.

    Battery and network state come from the host. Phone-only state (screen,
    lock, bluetooth, airplane mode, headphones, do-not-disturb) is unknown
    and reads as None.
    """

    def _battery(self):
        try:
            return psutil.sensors_battery()
        except (AttributeError, NotImplementedError, OSError) as e:
            logger.debug("Battery sensor unavailable: %s", e)
            return None

    def battery_level(self) -> Optional[int]:
        battery = self._battery()
        return int(round(battery.percent)) if battery is not None else None

    def is_charging(self) -> Optional[bool]:
        battery = self._battery()
        return bool(battery.power_plugged) if battery is not None else None

    def now(self) -> datetime:
        return datetime.now()

    def _interfaces_up(self) -> list[str]:
        stats = psutil.net_if_stats()
        return [
            name for name, stat in stats.items()
            if stat.isup and not name.startswith("lo")
        ]

    def wifi_connected(self) -> Optional[bool]:
        try:
            up = self._interfaces_up()
        except OSError as e:
            logger.debug("Network interfaces unavailable: %s", e)
            return None
        wireless = [n for n in up if n.startswith(("wl", "wlan", "wifi", "Wi-Fi"))]
        if wireless:
            return True
        return bool(up) or None

    def wifi_ssid(self) -> Optional[str]:
        return None

    def mobile_data_active(self) -> Optional[bool]:
        return None

    def screen_on(self) -> Optional[bool]:
        return None

    def device_locked(self) -> Optional[bool]:
        return None

    def bluetooth_connected(self) -> Optional[bool]:
        return None

    def airplane_mode(self) -> Optional[bool]:
        return None

    def headphones_connected(self) -> Optional[bool]:
        return None

    def do_not_disturb(self) -> Optional[bool]:
        return None
