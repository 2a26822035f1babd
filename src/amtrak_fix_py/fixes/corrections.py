"""
Correction rules

Deterministic transformations applied to flagged records. Every function
returns a new frame or row and leaves its inputs untouched.
"""

from typing import Any, Collection, Dict, List, Mapping, Optional, Tuple

import polars as pl

from amtrak_fix_py.fixes.config import FixConfig, RouteRebrand, StopOverride
from amtrak_fix_py.gtfs.gtfs_schema_map import gtfs_schema
from amtrak_fix_py.gtfs.tables import Row
from amtrak_fix_py.runtime_utils.fix_exception import ReferentialError


def synthesized_calendar_id(config: FixConfig, trip_short_name: str, trip_id: str) -> str:
    """service_id of the calendar synthesized for a single trip"""
    return f"{config.calendar_prefix}-{trip_short_name}-{trip_id}"


def synthesize_calendar(
    trip_id: str,
    trip_short_name: Optional[str],
    calendar: Mapping[str, Any],
    config: FixConfig,
) -> Optional[Row]:
    """
    create a calendar for a single trip with the days of week it actually
    departs on

    the trip's current calendar may be shared with unaffected trips, so a new
    calendar is created instead of changing it. start and end dates are kept.

    :param trip_id: trip being corrected
    :param trip_short_name: train number used to look up the corrected days
    :param calendar: current calendar row of the trip
    :param config: calendar_prefix and calendar_patterns

    :return new calendar row, or None if no pattern exists for trip_short_name
    """
    if trip_short_name is None:
        return None

    pattern = config.calendar_patterns.get(trip_short_name)
    if pattern is None:
        return None

    new_calendar: Row = {"service_id": synthesized_calendar_id(config, trip_short_name, trip_id)}
    new_calendar.update(pattern.as_dict())
    new_calendar["start_date"] = calendar["start_date"]
    new_calendar["end_date"] = calendar["end_date"]

    return new_calendar


def reassign_calendars(
    trips: pl.DataFrame,
    trip_ids: Collection[str],
    calendar_index: Mapping[str, Row],
    config: FixConfig,
) -> Tuple[pl.DataFrame, List[Row], List[str]]:
    """
    move each trip in trip_ids onto a synthesized calendar, when a pattern
    exists for its trip_short_name

    a synthesized id already present in calendar_index with the same content
    (the feed was corrected before) is reused instead of pushed again

    :return Tuple[
        trips with service_id reassigned,
        calendar rows to append to the calendar table, in trip order,
        trip_ids with no calendar pattern,
    ]

    :raises ReferentialError: a synthesized id collides with a different
        upstream calendar
    """
    assignments: Dict[str, str] = {}
    new_calendars: List[Row] = []
    unfixed: List[str] = []

    candidates = trips.filter(pl.col("trip_id").is_in(list(trip_ids)))
    for trip in candidates.iter_rows(named=True):
        new_calendar = synthesize_calendar(
            trip_id=trip["trip_id"],
            trip_short_name=trip["trip_short_name"],
            calendar=calendar_index[trip["service_id"]],
            config=config,
        )
        if new_calendar is None:
            unfixed.append(trip["trip_id"])
            continue

        service_id = new_calendar["service_id"]
        existing = calendar_index.get(service_id)
        if existing is not None:
            if any(existing[column] != value for column, value in new_calendar.items()):
                raise ReferentialError("calendar.txt", "service_id", [service_id])
        else:
            new_calendars.append(new_calendar)

        assignments[trip["trip_id"]] = service_id

    if not assignments:
        return trips, new_calendars, unfixed

    trips = trips.with_columns(
        pl.col("trip_id")
        .replace_strict(assignments, default=pl.col("service_id"), return_dtype=pl.String)
        .alias("service_id")
    )

    return trips, new_calendars, unfixed


def calendar_frame(rows: List[Row]) -> pl.DataFrame:
    """frame of synthesized calendar rows, typed like a loaded calendar table"""
    return pl.DataFrame(rows, schema=gtfs_schema("calendar.txt"))


def detach_shapes(
    trips: pl.DataFrame,
    blanket_route_ids: Collection[str],
    shape_ids: Collection[str],
) -> pl.DataFrame:
    """
    clear shape_id of trips on blanket removal routes or referencing a
    flagged shape. shape records are never removed.
    """
    on_blanket_route = pl.col("route_id").is_in(list(blanket_route_ids))
    detach = on_blanket_route | pl.col("shape_id").is_in(list(shape_ids)).fill_null(False)

    return trips.with_columns(
        pl.when(detach).then(pl.lit(None, dtype=pl.String)).otherwise(pl.col("shape_id")).alias("shape_id")
    )


def override_stop_coordinates(stops: pl.DataFrame, overrides: Mapping[str, StopOverride]) -> pl.DataFrame:
    """
    replace stop_name, stop_lat and stop_lon of the overridden stops. no
    other column changes.
    """
    if not overrides:
        return stops

    names = {stop_id: override.stop_name for stop_id, override in overrides.items()}
    lats = {stop_id: override.stop_lat for stop_id, override in overrides.items()}
    lons = {stop_id: override.stop_lon for stop_id, override in overrides.items()}

    return stops.with_columns(
        pl.col("stop_id").replace_strict(names, default=pl.col("stop_name"), return_dtype=pl.String).alias("stop_name"),
        pl.col("stop_id").replace_strict(lats, default=pl.col("stop_lat"), return_dtype=pl.Float64).alias("stop_lat"),
        pl.col("stop_id").replace_strict(lons, default=pl.col("stop_lon"), return_dtype=pl.Float64).alias("stop_lon"),
    )


def exclude_agencies(agency: pl.DataFrame, agency_names: Collection[str]) -> pl.DataFrame:
    """omit agencies by name"""
    return agency.filter(~pl.col("agency_name").is_in(list(agency_names)))


def exclude_routes(routes: pl.DataFrame, route_ids: Collection[str]) -> pl.DataFrame:
    """omit routes by id"""
    return routes.filter(~pl.col("route_id").is_in(list(route_ids)))


def exclude_trips(
    trips: pl.DataFrame,
    route_ids: Collection[str] = (),
    trip_ids: Collection[str] = (),
) -> pl.DataFrame:
    """omit trips on excluded routes, and excluded trips"""
    return trips.filter(
        ~pl.col("route_id").is_in(list(route_ids)),
        ~pl.col("trip_id").is_in(list(trip_ids)),
    )


def rebrand_routes(routes: pl.DataFrame, route_ids: Collection[str], rebrand: RouteRebrand) -> pl.DataFrame:
    """
    overwrite route_short_name, route_long_name and route_color of routes.
    route_id and agency_id are kept.
    """
    matches = pl.col("route_id").is_in(list(route_ids))

    return routes.with_columns(
        pl.when(matches)
        .then(pl.lit(rebrand.short_name, dtype=pl.String))
        .otherwise(pl.col("route_short_name"))
        .alias("route_short_name"),
        pl.when(matches)
        .then(pl.lit(rebrand.long_name, dtype=pl.String))
        .otherwise(pl.col("route_long_name"))
        .alias("route_long_name"),
        pl.when(matches)
        .then(pl.lit(rebrand.color, dtype=pl.String))
        .otherwise(pl.col("route_color"))
        .alias("route_color"),
    )
