"""
Correction rule configuration

Everything the correction rules need to know about the upstream feed lives in
one immutable FixConfig value, so the pipeline can be run with alternate rule
sets in tests or against a different feed.
"""

import dataclasses
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from amtrak_fix_py.gtfs.gtfs_types import WEEKDAY_COLUMNS
from amtrak_fix_py.runtime_utils.fix_exception import ConfigurationError
from amtrak_fix_py.runtime_utils.process_logger import ProcessLogger


@dataclass(frozen=True)
class NameExclusion:
    """an agency or route name to drop from the feed, and why"""

    name: str
    reason: str


@dataclass(frozen=True)
class RouteRebrand:
    """new route names and color for every route of an agency"""

    agency_name: str
    short_name: str
    long_name: str
    color: str


@dataclass(frozen=True)
class StopOverride:
    """corrected name and coordinates for a stop"""

    stop_name: str
    stop_lat: float
    stop_lon: float


@dataclass(frozen=True)
class CalendarPattern:
    """day of week flags for a synthesized calendar"""

    monday: bool
    tuesday: bool
    wednesday: bool
    thursday: bool
    friday: bool
    saturday: bool
    sunday: bool

    def as_dict(self) -> Dict[str, bool]:
        """day column -> flag"""
        return {day: getattr(self, day) for day in WEEKDAY_COLUMNS}


MON_THU_SAT = CalendarPattern(
    monday=True,
    tuesday=False,
    wednesday=False,
    thursday=True,
    friday=False,
    saturday=True,
    sunday=False,
)

SAT_ONLY = CalendarPattern(
    monday=False,
    tuesday=False,
    wednesday=False,
    thursday=False,
    friday=False,
    saturday=True,
    sunday=False,
)


# pylint: disable=R0902
# Too many instance attributes
@dataclass(frozen=True)
class FixConfig:
    """
    Immutable rule set for the feed correction pipeline

    :param shape_jump_threshold: max lat or lon change in degrees between two
        consecutive shape points before the shape is considered broken
    :param shape_denylist_route_names: route long names whose shapes are
        always removed
    :param reference_timezone: timezone schedules are published against
    :param grace_hours: non reference timezone -> hours after midnight where a
        first departure is treated as the previous evening's service
    :param midnight_exempt_route_names: route long names whose midnight
        crossing trips are reported but never corrected
    :param calendar_prefix: prefix of synthesized calendar service_ids
    :param calendar_patterns: trip_short_name -> days of week the trip
        actually departs
    :param excluded_agencies: agencies dropped along with their routes
    :param excluded_routes: routes dropped along with their trips
    :param rebrand: new names for the routes of a renamed agency
    :param phantom_trip_prefix: trip_short_name prefix of rebranded agency
        trips that do not operate
    :param stop_overrides: stop_id -> corrected name and coordinates
    """

    shape_jump_threshold: float = 0.1
    shape_denylist_route_names: Tuple[str, ...] = ()
    reference_timezone: str = "America/New_York"
    grace_hours: Mapping[str, int] = field(default_factory=dict)
    midnight_exempt_route_names: Tuple[str, ...] = ()
    calendar_prefix: str = "catenary"
    calendar_patterns: Mapping[str, CalendarPattern] = field(default_factory=dict)
    excluded_agencies: Tuple[NameExclusion, ...] = ()
    excluded_routes: Tuple[NameExclusion, ...] = ()
    rebrand: Optional[RouteRebrand] = None
    phantom_trip_prefix: Optional[str] = None
    stop_overrides: Mapping[str, StopOverride] = field(default_factory=dict)

    @classmethod
    def default(cls) -> "FixConfig":
        """rule set for the published Amtrak GTFS feed"""
        return cls(
            shape_jump_threshold=0.1,
            shape_denylist_route_names=("Amtrak Cascades",),
            reference_timezone="America/New_York",
            grace_hours={
                "America/Chicago": 1,
                "America/Denver": 2,
                "America/Los_Angeles": 3,
            },
            midnight_exempt_route_names=("Pacific Surfliner",),
            calendar_prefix="catenary",
            calendar_patterns={
                "2": MON_THU_SAT,
                "343": SAT_ONLY,
                "422": MON_THU_SAT,
            },
            excluded_agencies=(
                NameExclusion(
                    name="VIA Rail Canada",
                    reason="Canadian segments are published in the VIA Rail feed",
                ),
            ),
            excluded_routes=(
                NameExclusion(
                    name="Hartford Line",
                    reason="shared service is published in the CTrail Hartford Line feed",
                ),
                NameExclusion(
                    name="Valley Flyer",
                    reason="shared service is published in the CTrail Hartford Line feed",
                ),
            ),
            rebrand=RouteRebrand(
                agency_name="San Joaquins",
                short_name="Gold Runner",
                long_name="Gold Runner",
                color="D5A021",
            ),
            phantom_trip_prefix="3",
            stop_overrides={
                "SAC": StopOverride(
                    stop_name="Sacramento Valley Station",
                    stop_lat=38.584183,
                    stop_lon=-121.500655,
                ),
                "OKJ": StopOverride(
                    stop_name="Oakland Jack London Square",
                    stop_lat=37.793616,
                    stop_lon=-122.271640,
                ),
            },
        )

    @property
    def excluded_agency_names(self) -> Tuple[str, ...]:
        """names of excluded agencies"""
        return tuple(exclusion.name for exclusion in self.excluded_agencies)

    @property
    def excluded_route_names(self) -> Tuple[str, ...]:
        """long names of excluded routes"""
        return tuple(exclusion.name for exclusion in self.excluded_routes)


def _exclusions(values: Any) -> Tuple[NameExclusion, ...]:
    return tuple(NameExclusion(**value) for value in values)


# json value -> FixConfig field value, for fields that are not plain json types
_field_converters = {
    "shape_denylist_route_names": tuple,
    "midnight_exempt_route_names": tuple,
    "grace_hours": lambda values: {zone: int(hours) for zone, hours in values.items()},
    "calendar_patterns": lambda values: {name: CalendarPattern(**days) for name, days in values.items()},
    "excluded_agencies": _exclusions,
    "excluded_routes": _exclusions,
    "rebrand": lambda value: None if value is None else RouteRebrand(**value),
    "stop_overrides": lambda values: {stop_id: StopOverride(**stop) for stop_id, stop in values.items()},
}


def config_from_dict(overrides: Mapping[str, Any], base: Optional[FixConfig] = None) -> FixConfig:
    """
    create a FixConfig by replacing fields of base (FixConfig.default() if
    not provided) with json style values

    :raises ConfigurationError: unknown field or value that does not fit its field
    """
    if base is None:
        base = FixConfig.default()

    known_fields = {config_field.name for config_field in dataclasses.fields(FixConfig)}
    unknown = sorted(set(overrides) - known_fields)
    if unknown:
        raise ConfigurationError(f"Unknown configuration fields {unknown}")

    values = {}
    for name, value in overrides.items():
        converter = _field_converters.get(name)
        try:
            values[name] = converter(value) if converter is not None else value
        except (TypeError, AttributeError, ValueError) as exception:
            raise ConfigurationError(f"Invalid value for configuration field {name}: {exception}") from exception

    return dataclasses.replace(base, **values)


def config_from_json(path: str) -> FixConfig:
    """
    create a FixConfig from the default rule set and a json file of overrides

    :param path: local path to json object with FixConfig field names as keys
    """
    logger = ProcessLogger("config_from_json", path=path)
    logger.log_start()
    try:
        with open(path, "r", encoding="utf8") as config_file:
            overrides = json.load(config_file)
        if not isinstance(overrides, dict):
            raise ConfigurationError(f"Configuration file {path} must contain a json object")
        config = config_from_dict(overrides)
    except (OSError, json.JSONDecodeError) as exception:
        wrapped = ConfigurationError(f"Unable to read configuration file {path}: {exception}")
        logger.log_failure(wrapped)
        raise wrapped from exception
    except ConfigurationError as exception:
        logger.log_failure(exception)
        raise

    logger.add_metadata(overridden_fields=sorted(overrides.keys()), print_log=False)
    logger.log_complete()
    return config
