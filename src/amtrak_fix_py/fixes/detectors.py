"""
Anomaly detectors

Each detector reads FeedTables and returns the ids of the records it flags.
Detectors never modify the feed and do not depend on each other, so they may
be run in any order or concurrently.
"""

from dataclasses import dataclass, field
from typing import Collection, Dict, Set

import polars as pl

from amtrak_fix_py.fixes.config import FixConfig
from amtrak_fix_py.gtfs.gtfs_types import is_rail_route_type
from amtrak_fix_py.gtfs.tables import FeedTables
from amtrak_fix_py.runtime_utils.fix_exception import ReferentialError, UnsupportedTimezoneError
from amtrak_fix_py.runtime_utils.process_logger import ProcessLogger


@dataclass(frozen=True)
class ShapeFindings:
    """
    shapes to detach from trips

    broken_shape_ids: shapes with a jump between consecutive points
    denylisted_shape_ids: shapes only used by blanket removal routes
    blanket_route_ids: routes that lose every shape reference
    """

    broken_shape_ids: Set[str] = field(default_factory=set)
    denylisted_shape_ids: Set[str] = field(default_factory=set)
    blanket_route_ids: Set[str] = field(default_factory=set)


@dataclass(frozen=True)
class MidnightFindings:
    """
    rail trips whose first departure is shortly after midnight in a non
    reference timezone

    flagged_trip_ids: trips eligible for calendar correction
    exempt_trip_ids: flagged trips on exempt routes, reported only
    exempt_service_ids: service_ids used by any trip of an exempt route
    descriptions: trip_id -> "short_name route_long_name to headsign"
    """

    flagged_trip_ids: Set[str] = field(default_factory=set)
    exempt_trip_ids: Set[str] = field(default_factory=set)
    exempt_service_ids: Set[str] = field(default_factory=set)
    descriptions: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SupersededFindings:
    """
    agencies and routes published authoritatively elsewhere, and the routes
    of the agency being rebranded
    """

    excluded_agency_names: Set[str] = field(default_factory=set)
    excluded_agency_ids: Set[str] = field(default_factory=set)
    excluded_route_ids: Set[str] = field(default_factory=set)
    rebrand_route_ids: Set[str] = field(default_factory=set)


def _ids(frame: pl.DataFrame, column: str) -> Set[str]:
    return set(frame.get_column(column).drop_nulls().to_list())


def detect_broken_shapes(feed: FeedTables, config: FixConfig) -> ShapeFindings:
    """
    flag shapes with consecutive points further apart than
    config.shape_jump_threshold degrees in latitude or longitude, and shapes
    that only serve routes in config.shape_denylist_route_names

    a single bad point makes the whole polyline unusable, so the shape is
    flagged as a whole
    """
    logger = ProcessLogger(
        "detect_broken_shapes",
        shape_points=feed.shapes.height,
        threshold=config.shape_jump_threshold,
    )
    logger.log_start()

    jumps = (
        feed.shapes.sort(["shape_id", "shape_pt_sequence"])
        .with_columns(
            pl.col("shape_pt_lat").diff().over("shape_id").abs().alias("lat_jump"),
            pl.col("shape_pt_lon").diff().over("shape_id").abs().alias("lon_jump"),
        )
        .filter(
            (pl.col("lat_jump") > config.shape_jump_threshold) | (pl.col("lon_jump") > config.shape_jump_threshold)
        )
    )
    broken_shape_ids = _ids(jumps, "shape_id")

    blanket_route_ids = _ids(
        feed.routes.filter(pl.col("route_long_name").is_in(list(config.shape_denylist_route_names))),
        "route_id",
    )

    # shapes shared with any route outside the denylist keep their geometry
    # for those other routes
    denylisted = (
        feed.trips.filter(pl.col("shape_id").is_not_null())
        .group_by("shape_id")
        .agg(pl.col("route_id").is_in(list(blanket_route_ids)).all().alias("denylisted_only"))
        .filter(pl.col("denylisted_only"))
    )
    denylisted_shape_ids = _ids(denylisted, "shape_id")

    logger.add_metadata(
        broken_shapes=len(broken_shape_ids),
        denylisted_shapes=len(denylisted_shape_ids),
        blanket_routes=len(blanket_route_ids),
    )
    logger.log_complete()

    return ShapeFindings(
        broken_shape_ids=broken_shape_ids,
        denylisted_shape_ids=denylisted_shape_ids,
        blanket_route_ids=blanket_route_ids,
    )


def _first_stops_of_rail_trips(feed: FeedTables) -> pl.DataFrame:
    """
    look up the route and first stop of every rail trip through the feed
    indexes. references were resolved when the feed was loaded.

    :return dataframe:
        trip_id -> String
        route_id -> String
        service_id -> String
        trip_short_name -> String
        trip_headsign -> String
        route_long_name -> String
        stop_id -> String
        departure_seconds -> Int64
        stop_timezone -> String
    """
    rows = []
    for trip_id, trip in feed.trip_index.items():
        route = feed.route_index[trip["route_id"]]
        if not is_rail_route_type(route["route_type"]):
            continue

        first_stop_time = feed.first_stop_times[trip_id]
        rows.append(
            {
                "trip_id": trip_id,
                "route_id": trip["route_id"],
                "service_id": trip["service_id"],
                "trip_short_name": trip["trip_short_name"],
                "trip_headsign": trip["trip_headsign"],
                "route_long_name": route["route_long_name"],
                "stop_id": first_stop_time["stop_id"],
                "departure_seconds": first_stop_time["departure_seconds"],
                "stop_timezone": feed.stop_index[first_stop_time["stop_id"]]["stop_timezone"],
            }
        )

    return pl.DataFrame(
        rows,
        schema={
            "trip_id": pl.String,
            "route_id": pl.String,
            "service_id": pl.String,
            "trip_short_name": pl.String,
            "trip_headsign": pl.String,
            "route_long_name": pl.String,
            "stop_id": pl.String,
            "departure_seconds": pl.Int64,
            "stop_timezone": pl.String,
        },
    ).sort("trip_id")


def detect_midnight_crossings(feed: FeedTables, config: FixConfig) -> MidnightFindings:
    """
    flag rail trips that start within config.grace_hours of midnight in a
    timezone other than config.reference_timezone

    published schedules show these departures on the calendar day after the
    one they actually leave on, so the trip's service_id points at the wrong
    days of the week

    :raises ReferentialError: a rail trip's first stop has no departure time
        or no timezone
    :raises UnsupportedTimezoneError: a rail trip starts in a timezone with no
        configured grace hours
    """
    logger = ProcessLogger("detect_midnight_crossings", reference_timezone=config.reference_timezone)
    logger.log_start()

    try:
        rail_trips = _first_stops_of_rail_trips(feed)
        logger.add_metadata(rail_trips=rail_trips.height)

        missing_departure = rail_trips.filter(pl.col("departure_seconds").is_null())
        if missing_departure.height > 0:
            raise ReferentialError("stop_times.txt", "departure_time", missing_departure.get_column("trip_id"))

        missing_timezone = rail_trips.filter(pl.col("stop_timezone").is_null())
        if missing_timezone.height > 0:
            raise ReferentialError("stops.txt", "stop_timezone", missing_timezone.get_column("stop_id"))

        grace_hours = pl.DataFrame(
            {
                "stop_timezone": list(config.grace_hours.keys()),
                "grace_hours": list(config.grace_hours.values()),
            },
            schema={"stop_timezone": pl.String, "grace_hours": pl.Int64},
        )
        candidates = rail_trips.filter(pl.col("stop_timezone") != config.reference_timezone).join(
            grace_hours, on="stop_timezone", how="left"
        )

        unsupported = candidates.filter(pl.col("grace_hours").is_null()).sort("trip_id")
        if unsupported.height > 0:
            first = unsupported.row(0, named=True)
            raise UnsupportedTimezoneError(first["stop_timezone"], first["trip_id"])
    except Exception as exception:
        logger.log_failure(exception)
        raise

    is_exempt = pl.col("route_long_name").is_in(list(config.midnight_exempt_route_names)).fill_null(False)

    flagged = candidates.filter(pl.col("departure_seconds") <= pl.col("grace_hours") * 3600).with_columns(
        is_exempt.alias("exempt"),
        pl.concat_str(
            pl.col("trip_short_name").fill_null(""),
            pl.col("route_long_name").fill_null(""),
            pl.lit("to"),
            pl.col("trip_headsign").fill_null(""),
            separator=" ",
        ).alias("description"),
    )

    findings = MidnightFindings(
        flagged_trip_ids=_ids(flagged.filter(~pl.col("exempt")), "trip_id"),
        exempt_trip_ids=_ids(flagged.filter(pl.col("exempt")), "trip_id"),
        exempt_service_ids=_ids(rail_trips.filter(is_exempt), "service_id"),
        descriptions=dict(zip(flagged.get_column("trip_id").to_list(), flagged.get_column("description").to_list())),
    )

    logger.add_metadata(
        flagged_trips=len(findings.flagged_trip_ids),
        exempt_trips=len(findings.exempt_trip_ids),
        exempt_services=len(findings.exempt_service_ids),
    )
    logger.log_complete()

    return findings


def _routes_of_agencies(feed: FeedTables, agency_names: Collection[str]) -> Set[str]:
    """
    route_ids of the agencies named in agency_names

    a route with a NULL agency_id belongs to a named agency that has a NULL
    agency_id, or to the only agency of a single agency feed
    """
    agencies = feed.agency.filter(pl.col("agency_name").is_in(list(agency_names)))
    if agencies.height == 0:
        return set()

    claims_unassigned = agencies.get_column("agency_id").null_count() > 0 or feed.agency.height == 1

    route_ids = set()
    for route_id, route in feed.route_index.items():
        if route["agency_id"] is None:
            if claims_unassigned:
                route_ids.add(route_id)
        elif feed.agency_index[route["agency_id"]]["agency_name"] in agency_names:
            route_ids.add(route_id)

    return route_ids


def rebrand_route_ids(feed: FeedTables, config: FixConfig) -> Set[str]:
    """route_ids of the agency named by config.rebrand"""
    if config.rebrand is None:
        return set()

    return _routes_of_agencies(feed, {config.rebrand.agency_name})


def excluded_route_ids(feed: FeedTables, config: FixConfig) -> Set[str]:
    """route_ids listed in config.excluded_routes or run by an agency in config.excluded_agencies"""
    by_name = _ids(
        feed.routes.filter(pl.col("route_long_name").is_in(list(config.excluded_route_names))),
        "route_id",
    )
    return by_name | _routes_of_agencies(feed, set(config.excluded_agency_names))


def detect_superseded_entities(feed: FeedTables, config: FixConfig) -> SupersededFindings:
    """
    flag agencies and routes listed in config.excluded_agencies and
    config.excluded_routes. every route of an excluded agency is flagged as
    well. routes of the rebranded agency are identified for renaming, not
    removal.
    """
    logger = ProcessLogger("detect_superseded_entities")
    logger.log_start()

    excluded_agencies = feed.agency.filter(pl.col("agency_name").is_in(list(config.excluded_agency_names)))
    excluded = excluded_route_ids(feed, config)

    findings = SupersededFindings(
        excluded_agency_names=_ids(excluded_agencies, "agency_name"),
        excluded_agency_ids=_ids(excluded_agencies, "agency_id"),
        excluded_route_ids=excluded,
        rebrand_route_ids=rebrand_route_ids(feed, config) - excluded,
    )

    logger.add_metadata(
        excluded_agencies=excluded_agencies.height,
        excluded_routes=len(findings.excluded_route_ids),
        rebrand_routes=len(findings.rebrand_route_ids),
    )
    logger.log_complete()

    return findings


def detect_phantom_trips(feed: FeedTables, config: FixConfig) -> Set[str]:
    """
    flag trips of the rebranded agency whose trip_short_name starts with
    config.phantom_trip_prefix. the agency's published timetables show these
    trips do not operate.
    """
    logger = ProcessLogger("detect_phantom_trips", prefix=config.phantom_trip_prefix)
    logger.log_start()

    if not config.phantom_trip_prefix:
        logger.add_metadata(phantom_trips=0)
        logger.log_complete()
        return set()

    phantom_trip_ids = _ids(
        feed.trips.filter(
            pl.col("route_id").is_in(list(rebrand_route_ids(feed, config))),
            pl.col("trip_short_name").str.starts_with(config.phantom_trip_prefix).fill_null(False),
        ),
        "trip_id",
    )

    logger.add_metadata(phantom_trips=len(phantom_trip_ids))
    logger.log_complete()

    return phantom_trip_ids
