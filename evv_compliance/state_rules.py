# state_rules.py
"""
Per-state EVV rule catalog.

Numbers (geofence radius, GPS accuracy ceiling, grace periods), the
aggregators each state mandates and the advice prose shown to caregivers all
live here, so supporting a new state or updating a regulatory window is a
settings change rather than an orchestrator change:

    EVV_STATE_RULE_OVERRIDES = {
        "TX": {"advice": {"correction_window_days": 45}},
        "FL": {
            "base_radius_meters": 175,
            "mco_routing": {"Sunshine Health": ["Netsmart"]},
        },
    }
"""
import logging
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional, Tuple

import pytz
from django.core.exceptions import ImproperlyConfigured

from .conf import get_setting
from .domain import GeofencePolicy
from .exceptions import StateNotSupported

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GracePeriods:
    early_clock_in_minutes: int
    late_clock_in_minutes: int
    late_clock_out_minutes: int


@dataclass(frozen=True)
class StateAdvice:
    """State-specific wording appended to validation recommendations"""
    geofence_correction: Optional[str] = None
    correction_window_days: Optional[int] = None
    routing_reminder: Optional[str] = None

    def geofence_recommendations(self, rules):
        if not self.geofence_correction:
            return []
        return [self.geofence_correction.format(
            state=rules.state,
            state_name=rules.state_name,
            window_days=self.correction_window_days,
        )]

    def routing_recommendations(self, rules):
        if len(rules.aggregators) < 2:
            return []
        template = self.routing_reminder or (
            "{state_name} uses multiple EVV aggregators ({aggregators}). "
            "Verify payor-specific routing is configured correctly."
        )
        return [template.format(
            state=rules.state,
            state_name=rules.state_name,
            aggregators=", ".join(rules.aggregators),
        )]


@dataclass(frozen=True)
class StateRules:
    state: str
    state_name: str
    aggregators: Tuple[str, ...]
    key_regulations: Tuple[str, ...]
    timezone: str
    mandated: bool = True
    geofencing_required: bool = True
    base_radius_meters: float = 100
    gps_accuracy_tolerance: float = 50
    geofence_policy: GeofencePolicy = GeofencePolicy.ACCURACY
    max_gps_accuracy_meters: float = 100
    early_clock_in_minutes: int = 10
    late_clock_in_minutes: int = 10
    late_clock_out_minutes: int = 10
    advice: StateAdvice = field(default_factory=StateAdvice)
    # MCO name -> aggregators its visits go to; unlisted MCOs go to all
    mco_routing: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)

    @property
    def tz(self):
        return pytz.timezone(self.timezone)

    @property
    def regulatory_context(self):
        return f"{self.state_name} EVV requirements per {', '.join(self.key_regulations)}"


DEFAULT_STATE_RULES = {
    "TX": StateRules(
        state="TX",
        state_name="Texas",
        aggregators=("HHAeXchange",),
        key_regulations=("26 TAC §558", "40 TAC §97.601"),
        timezone="America/Chicago",
        base_radius_meters=100,
        gps_accuracy_tolerance=50,
        max_gps_accuracy_meters=100,
        early_clock_in_minutes=10,
        late_clock_in_minutes=10,
        late_clock_out_minutes=10,
        advice=StateAdvice(
            geofence_correction=(
                "Texas requires VMUR (Visit Maintenance Unlock Request) for geofence "
                "corrections within {window_days} days of visit."
            ),
            correction_window_days=30,
        ),
    ),
    "FL": StateRules(
        state="FL",
        state_name="Florida",
        aggregators=("HHAeXchange", "Netsmart"),
        key_regulations=("FL Stat. § 400.462", "FL Admin. Code 59A-8"),
        timezone="America/New_York",
        base_radius_meters=150,
        gps_accuracy_tolerance=75,
        max_gps_accuracy_meters=150,
        early_clock_in_minutes=15,
        late_clock_in_minutes=15,
        late_clock_out_minutes=15,
        advice=StateAdvice(
            routing_reminder=(
                "Florida supports multiple EVV aggregators. "
                "Ensure MCO-specific routing is configured correctly."
            ),
        ),
    ),
    "PA": StateRules(
        state="PA",
        state_name="Pennsylvania",
        aggregators=("Sandata", "HHAeXchange"),
        key_regulations=("28 Pa. Code § 51",),
        timezone="America/New_York",
    ),
    "OH": StateRules(
        state="OH",
        state_name="Ohio",
        aggregators=("Sandata",),
        key_regulations=("ORC 3701.881",),
        timezone="America/New_York",
    ),
    "NC": StateRules(
        state="NC",
        state_name="North Carolina",
        aggregators=("Sandata",),
        key_regulations=("10A NCAC 13F",),
        timezone="America/New_York",
        geofence_policy=GeofencePolicy.FIXED_TOLERANCE,
    ),
    "AZ": StateRules(
        state="AZ",
        state_name="Arizona",
        aggregators=("Sandata",),
        key_regulations=("ARS Title 36, Chapter 4",),
        timezone="US/Arizona",
    ),
    "GA": StateRules(
        state="GA",
        state_name="Georgia",
        aggregators=("Sandata",),
        key_regulations=("GA Comp. R. & Regs. 111-8-70",),
        timezone="America/New_York",
    ),
    "AL": StateRules(
        state="AL",
        state_name="Alabama",
        aggregators=("Sandata", "HHAeXchange"),
        key_regulations=("AL Admin Code 420-5-10",),
        timezone="America/Chicago",
    ),
    "AK": StateRules(
        state="AK",
        state_name="Alaska",
        aggregators=("State_Portal",),
        key_regulations=("7 AAC 12.900",),
        timezone="America/Anchorage",
        # Rural coverage; location is recorded but not enforced
        geofencing_required=False,
        base_radius_meters=200,
        gps_accuracy_tolerance=100,
        geofence_policy=GeofencePolicy.FIXED_TOLERANCE,
        max_gps_accuracy_meters=200,
        early_clock_in_minutes=15,
        late_clock_in_minutes=15,
        late_clock_out_minutes=15,
    ),
}


def _apply_override(state, base, values):
    values = dict(values)
    advice = values.pop("advice", None)
    if "geofence_policy" in values:
        values["geofence_policy"] = GeofencePolicy(values["geofence_policy"])
    for key in ("aggregators", "key_regulations"):
        if key in values:
            values[key] = tuple(values[key])
    if "mco_routing" in values:
        values["mco_routing"] = {mco: tuple(names) for mco, names in values["mco_routing"].items()}

    try:
        if base is None:
            rules = StateRules(state=state, **values)
        else:
            rules = replace(base, **values)
        if advice is not None:
            rules = replace(rules, advice=replace(rules.advice, **advice))
    except TypeError as e:
        raise ImproperlyConfigured(f"Invalid EVV_STATE_RULE_OVERRIDES entry for {state}: {e}")
    return rules


class StateRuleCatalog:
    """Read-only lookup of state rules keyed by two-letter state code"""

    def __init__(self, rules=None):
        self._rules = dict(DEFAULT_STATE_RULES if rules is None else rules)

    @classmethod
    def from_settings(cls):
        rules = dict(DEFAULT_STATE_RULES)
        for state, values in get_setting("EVV_STATE_RULE_OVERRIDES").items():
            state = state.upper()
            rules[state] = _apply_override(state, rules.get(state), values)
            logger.info(f"EVV rule override applied for {state}")
        return cls(rules)

    def get(self, state):
        try:
            return self._rules[state]
        except KeyError:
            raise StateNotSupported(state, "no EVV rules configured") from None

    def is_supported(self, state):
        return state in self._rules

    def supported_states(self):
        return sorted(self._rules)

    def geofence_radius(self, state, gps_accuracy=None):
        """Allowed clock-in distance in meters: base radius plus accuracy allowance"""
        rules = self.get(state)
        if rules.geofence_policy == GeofencePolicy.FIXED_TOLERANCE or gps_accuracy is None:
            return rules.base_radius_meters + rules.gps_accuracy_tolerance
        return rules.base_radius_meters + gps_accuracy

    def grace_periods(self, state):
        rules = self.get(state)
        return GracePeriods(
            early_clock_in_minutes=rules.early_clock_in_minutes,
            late_clock_in_minutes=rules.late_clock_in_minutes,
            late_clock_out_minutes=rules.late_clock_out_minutes,
        )

    def required_aggregators(self, state):
        return list(self.get(state).aggregators)

    def regulatory_context(self, state):
        return self.get(state).regulatory_context

    def advice(self, state):
        return self.get(state).advice


_default_catalog = None


def get_default_catalog():
    global _default_catalog
    if _default_catalog is None:
        _default_catalog = StateRuleCatalog.from_settings()
    return _default_catalog
