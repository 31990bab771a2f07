"""
ConstraintGate - decide whether a macro may run right now.

The gate is a conjunction over the macro's constraints with short-circuit
on the first unsatisfied one. An empty list is satisfied.

Each constraint type maps to a checker function:

    checker(config, env) -> Optional[bool]

A checker reads device state through the Environment and never mutates
anything. Returning None means "cannot tell" (missing config key or unknown
reading) and counts as satisfied. Unknown constraint types and checker
exceptions are logged and also count as satisfied, so a broken constraint
never blocks a macro.
"""

import logging
from datetime import date, datetime
from typing import Any, Callable, Optional

from automacro.conditions import Operator, compare
from automacro.environment import Environment
from automacro.schemas import Constraint

logger = logging.getLogger(__name__)

Checker = Callable[[dict[str, Any], Environment], Optional[bool]]

DAYS = {
    "MONDAY": 0, "MON": 0,
    "TUESDAY": 1, "TUE": 1,
    "WEDNESDAY": 2, "WED": 2,
    "THURSDAY": 3, "THU": 3,
    "FRIDAY": 4, "FRI": 4,
    "SATURDAY": 5, "SAT": 5,
    "SUNDAY": 6, "SUN": 6,
}


def _flag(config: dict[str, Any], key: str, default: Optional[bool] = None) -> Optional[bool]:
    """Read a boolean config value; "true"/"false" strings are accepted."""
    value = config.get(key, default)
    if value is None or isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "1", "yes"):
        return True
    if text in ("false", "0", "no"):
        return False
    return None


def _int(value: Any) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _minutes(hhmm: Any) -> Optional[int]:
    parts = str(hhmm).split(":")
    if len(parts) != 2:
        return None
    hour, minute = _int(parts[0]), _int(parts[1])
    if hour is None or minute is None:
        return None
    return hour * 60 + minute


def _matches(actual: Optional[bool], expected: Optional[bool]) -> Optional[bool]:
    if actual is None or expected is None:
        return None
    return actual == expected


# =============================================================================
# CHECKERS
# =============================================================================


def check_battery_level(config: dict[str, Any], env: Environment) -> Optional[bool]:
    expected = _int(config.get("value"))
    level = env.battery_level()
    if expected is None or level is None:
        return None
    operator = Operator.parse(config.get("operator", "EQUALS"))
    return compare(str(level), operator, str(expected))


def check_battery_level_range(config: dict[str, Any], env: Environment) -> Optional[bool]:
    low = _int(config.get("minLevel", 0))
    high = _int(config.get("maxLevel", 100))
    level = env.battery_level()
    if level is None:
        return None
    return (0 if low is None else low) <= level <= (100 if high is None else high)


def check_charging_status(config: dict[str, Any], env: Environment) -> Optional[bool]:
    return _matches(env.is_charging(), _flag(config, "isCharging"))


def check_time_range(config: dict[str, Any], env: Environment) -> Optional[bool]:
    start = _minutes(config.get("startTime"))
    end = _minutes(config.get("endTime"))
    if start is None or end is None:
        return None
    now = env.now()
    current = now.hour * 60 + now.minute
    if start <= end:
        return start <= current <= end
    # Overnight range, e.g. 22:00-06:00
    return current >= start or current <= end


def check_day_of_week(config: dict[str, Any], env: Environment) -> Optional[bool]:
    days = config.get("days")
    if not isinstance(days, (list, tuple)):
        return None
    allowed = {DAYS[str(d).upper()] for d in days if str(d).upper() in DAYS}
    return env.now().weekday() in allowed


def check_exclude_weekends(config: dict[str, Any], env: Environment) -> Optional[bool]:
    exclude = _flag(config, "exclude", True)
    is_weekend = env.now().weekday() >= 5
    return not is_weekend if exclude is not False else is_weekend


def _target_date(value: Any) -> Optional[date]:
    if value is None:
        return None
    millis = _int(value)
    if millis is not None:
        return datetime.fromtimestamp(millis / 1000).date()
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        return None


def check_specific_date(config: dict[str, Any], env: Environment) -> Optional[bool]:
    target = _target_date(config.get("date"))
    if target is None:
        return None
    return env.now().date() == target


def check_screen_state(config: dict[str, Any], env: Environment) -> Optional[bool]:
    return _matches(env.screen_on(), _flag(config, "isOn"))


def check_device_locked(config: dict[str, Any], env: Environment) -> Optional[bool]:
    return _matches(env.device_locked(), _flag(config, "isLocked"))


def check_wifi_connected(config: dict[str, Any], env: Environment) -> Optional[bool]:
    connected = env.wifi_connected()
    if connected is None:
        return None
    if not connected:
        return False
    ssid = config.get("ssid")
    if ssid is None:
        return True
    current = env.wifi_ssid()
    if current is None:
        return None
    return current.strip('"') == str(ssid)


def check_wifi_disconnected(config: dict[str, Any], env: Environment) -> Optional[bool]:
    connected = env.wifi_connected()
    return None if connected is None else not connected


def check_mobile_data_active(config: dict[str, Any], env: Environment) -> Optional[bool]:
    return env.mobile_data_active()


def check_bluetooth_connected(config: dict[str, Any], env: Environment) -> Optional[bool]:
    return env.bluetooth_connected()


def check_airplane_mode(config: dict[str, Any], env: Environment) -> Optional[bool]:
    return _matches(env.airplane_mode(), _flag(config, "enabled"))


def check_headphones_connected(config: dict[str, Any], env: Environment) -> Optional[bool]:
    return env.headphones_connected()


def check_do_not_disturb(config: dict[str, Any], env: Environment) -> Optional[bool]:
    return env.do_not_disturb()


BUILTIN_CHECKERS: dict[str, Checker] = {
    "BATTERY_LEVEL": check_battery_level,
    "BATTERY_LEVEL_RANGE": check_battery_level_range,
    "CHARGING_STATUS": check_charging_status,
    "TIME_RANGE": check_time_range,
    "DAY_OF_WEEK": check_day_of_week,
    "EXCLUDE_WEEKENDS": check_exclude_weekends,
    "SPECIFIC_DATE": check_specific_date,
    "SCREEN_STATE": check_screen_state,
    "DEVICE_LOCKED": check_device_locked,
    "WIFI_CONNECTED": check_wifi_connected,
    "WIFI_DISCONNECTED": check_wifi_disconnected,
    "MOBILE_DATA_ACTIVE": check_mobile_data_active,
    "BLUETOOTH_CONNECTED": check_bluetooth_connected,
    "AIRPLANE_MODE": check_airplane_mode,
    "HEADPHONES_CONNECTED": check_headphones_connected,
    "DO_NOT_DISTURB_ENABLED": check_do_not_disturb,
}


# =============================================================================
# GATE
# =============================================================================


class ConstraintGate:
    """
    Evaluates constraint lists against an Environment.

    Usage:
        gate = ConstraintGate(StaticEnvironment(battery_level=40))
        gate.evaluate([Constraint("BATTERY_LEVEL", {"operator": ">", "value": 20})])
    """

    def __init__(self, environment: Environment):
        self._environment = environment
        self._checkers: dict[str, Checker] = dict(BUILTIN_CHECKERS)

    @property
    def environment(self) -> Environment:
        return self._environment

    def register(self, constraint_type: str, checker: Checker) -> None:
        """Register (or replace) the checker for a constraint type."""
        self._checkers[constraint_type.upper()] = checker

    def list_types(self) -> list[str]:
        return sorted(self._checkers)

    def is_satisfied(self, constraint: Constraint) -> bool:
        checker = self._checkers.get(constraint.type.upper())
        if checker is None:
            logger.warning("Unknown constraint type: %s", constraint.type)
            return True
        try:
            result = checker(constraint.config, self._environment)
        except Exception as e:
            logger.warning("Error evaluating constraint %s: %s", constraint.type, e)
            return True
        if result is None:
            logger.warning("Constraint %s could not be evaluated, treating as satisfied", constraint.type)
            return True
        return bool(result)

    def explain(self, constraints: list[Constraint]) -> Optional[str]:
        """Type of the first unsatisfied constraint, or None if all pass."""
        for constraint in constraints:
            if not self.is_satisfied(constraint):
                return constraint.type
        return None

    def evaluate(self, constraints: list[Constraint]) -> bool:
        """True if every constraint is satisfied (empty list -> True)."""
        return self.explain(constraints) is None
