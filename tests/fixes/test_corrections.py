import dataclasses
import datetime
from typing import Optional

import polars as pl
import pytest
from polars.testing import assert_frame_equal

from amtrak_fix_py.fixes.config import MON_THU_SAT, FixConfig, RouteRebrand, StopOverride
from amtrak_fix_py.fixes.corrections import (
    calendar_frame,
    detach_shapes,
    exclude_agencies,
    exclude_routes,
    exclude_trips,
    override_stop_coordinates,
    reassign_calendars,
    rebrand_routes,
    synthesize_calendar,
)
from amtrak_fix_py.gtfs.gtfs_schema_map import gtfs_schema
from amtrak_fix_py.gtfs.tables import FeedTables
from amtrak_fix_py.runtime_utils.fix_exception import ReferentialError


def test_synthesize_calendar_train_2(feed_tables: FeedTables, config: FixConfig) -> None:
    """It creates a Monday, Thursday and Saturday calendar for train 2, keeping the original dates."""
    new_calendar = synthesize_calendar("T_SL_2", "2", feed_tables.calendar_index["SUWEFR"], config)

    assert new_calendar == {
        "service_id": "catenary-2-T_SL_2",
        "monday": True,
        "tuesday": False,
        "wednesday": False,
        "thursday": True,
        "friday": False,
        "saturday": True,
        "sunday": False,
        "start_date": datetime.date(2026, 1, 5),
        "end_date": datetime.date(2026, 11, 30),
    }
    # the shared calendar is untouched
    assert feed_tables.calendar_index["SUWEFR"]["wednesday"] is True


@pytest.mark.parametrize(
    ["trip_short_name", "expected_days"],
    [
        ("343", ["saturday"]),
        ("422", ["monday", "thursday", "saturday"]),
        ("5", None),
        (None, None),
    ],
    ids=[
        "train-343",
        "train-422",
        "no-pattern",
        "no-short-name",
    ],
)
def test_synthesize_calendar_patterns(
    feed_tables: FeedTables,
    config: FixConfig,
    trip_short_name: Optional[str],
    expected_days: Optional[list],
) -> None:
    """It uses the day pattern of the train number, or creates nothing without one."""
    new_calendar = synthesize_calendar("T_X", trip_short_name, feed_tables.calendar_index["DAILY"], config)

    if expected_days is None:
        assert new_calendar is None
        return

    assert new_calendar is not None
    assert new_calendar["service_id"] == f"catenary-{trip_short_name}-T_X"
    assert [day for day in MON_THU_SAT.as_dict() if new_calendar[day]] == expected_days


def test_synthesize_calendar_prefix(feed_tables: FeedTables, config: FixConfig) -> None:
    """It names synthesized calendars with the configured prefix."""
    new_calendar = synthesize_calendar(
        "T_SL_2",
        "2",
        feed_tables.calendar_index["SUWEFR"],
        dataclasses.replace(config, calendar_prefix="fixed"),
    )

    assert new_calendar is not None
    assert new_calendar["service_id"] == "fixed-2-T_SL_2"


def test_reassign_calendars(feed_tables: FeedTables, config: FixConfig) -> None:
    """It moves trips with a pattern onto synthesized calendars and reports the rest."""
    trips, new_calendars, unfixed = reassign_calendars(
        feed_tables.trips,
        trip_ids={"T_SL_2", "T_CZ_5"},
        calendar_index=feed_tables.calendar_index,
        config=config,
    )

    service_ids = dict(zip(trips.get_column("trip_id").to_list(), trips.get_column("service_id").to_list()))
    assert service_ids["T_SL_2"] == "catenary-2-T_SL_2"
    assert service_ids["T_CZ_5"] == "DAILY"
    assert service_ids["T_CZ_6"] == "DAILY"
    assert [row["service_id"] for row in new_calendars] == ["catenary-2-T_SL_2"]
    assert unfixed == ["T_CZ_5"]
    assert_frame_equal(trips.drop("service_id"), feed_tables.trips.drop("service_id"))


def test_reassign_calendars_existing(feed_tables: FeedTables, config: FixConfig) -> None:
    """It reuses a synthesized calendar already in the feed instead of creating it again."""
    new_calendar = synthesize_calendar("T_SL_2", "2", feed_tables.calendar_index["SUWEFR"], config)
    assert new_calendar is not None
    calendar_index = dict(feed_tables.calendar_index)
    calendar_index[new_calendar["service_id"]] = new_calendar

    trips, new_calendars, unfixed = reassign_calendars(feed_tables.trips, {"T_SL_2"}, calendar_index, config)

    assert new_calendars == []
    assert unfixed == []
    assert trips.filter(pl.col("trip_id") == "T_SL_2").get_column("service_id").item() == "catenary-2-T_SL_2"


def test_reassign_calendars_collision(feed_tables: FeedTables, config: FixConfig) -> None:
    """It refuses to reuse a calendar id that already exists with different days."""
    calendar_index = dict(feed_tables.calendar_index)
    calendar_index["catenary-2-T_SL_2"] = dict(feed_tables.calendar_index["DAILY"], service_id="catenary-2-T_SL_2")

    with pytest.raises(ReferentialError):
        reassign_calendars(feed_tables.trips, {"T_SL_2"}, calendar_index, config)


def test_calendar_frame() -> None:
    """It types synthesized calendar rows like a loaded calendar table."""
    assert calendar_frame([]).schema == pl.Schema(gtfs_schema("calendar.txt"))


def test_detach_shapes(feed_tables: FeedTables) -> None:
    """It clears flagged shapes and every shape of blanket removal routes, and keeps the rest."""
    trips = detach_shapes(feed_tables.trips, blanket_route_ids={"CAS"}, shape_ids={"SHP_SL"})

    shape_ids = dict(zip(trips.get_column("trip_id").to_list(), trips.get_column("shape_id").to_list()))
    assert shape_ids["T_SL_2"] is None
    assert shape_ids["T_CAS_501"] is None
    assert shape_ids["T_NEC_171"] == "SHP_NEC"
    assert shape_ids["T_CZ_5"] == "SHP_CZ"
    assert shape_ids["T_HFD_400"] is None
    assert trips.height == feed_tables.trips.height


def test_override_stop_coordinates(feed_tables: FeedTables) -> None:
    """It replaces the name and coordinates of overridden stops and nothing else."""
    stops = override_stop_coordinates(
        feed_tables.stops,
        {"SAC": StopOverride(stop_name="Sacramento Valley Station", stop_lat=38.584183, stop_lon=-121.500655)},
    )

    sac = stops.filter(pl.col("stop_id") == "SAC").row(0, named=True)
    assert sac["stop_name"] == "Sacramento Valley Station"
    assert sac["stop_lat"] == 38.584183
    assert sac["stop_lon"] == -121.500655
    assert sac["stop_timezone"] == "America/Los_Angeles"
    assert sac["wheelchair_boarding"] == "1"

    assert_frame_equal(stops.filter(pl.col("stop_id") != "SAC"), feed_tables.stops.filter(pl.col("stop_id") != "SAC"))


def test_exclusions(feed_tables: FeedTables) -> None:
    """It omits excluded agencies, routes and trips, keeping row order."""
    agency = exclude_agencies(feed_tables.agency, {"VIA Rail Canada"})
    routes = exclude_routes(feed_tables.routes, {"MAPLE", "HFD"})
    trips = exclude_trips(feed_tables.trips, route_ids={"MAPLE", "HFD"}, trip_ids={"T_SJ_3711"})

    assert agency.get_column("agency_name").to_list() == ["Amtrak", "San Joaquins"]
    assert "MAPLE" not in routes.get_column("route_id").to_list()
    assert routes.height == 7
    assert trips.get_column("trip_id").to_list() == [
        "T_NEC_171",
        "T_SL_2",
        "T_CZ_5",
        "T_CZ_6",
        "T_CAS_501",
        "T_SUR_768",
        "T_SJ_711",
        "T_BUS_6000",
    ]


def test_exclusions_empty(feed_tables: FeedTables) -> None:
    """It keeps every row when nothing is excluded."""
    assert_frame_equal(exclude_trips(feed_tables.trips), feed_tables.trips)
    assert_frame_equal(exclude_routes(feed_tables.routes, set()), feed_tables.routes)


def test_rebrand_routes(feed_tables: FeedTables) -> None:
    """It renames and recolors matching routes, keeping their ids and agency."""
    routes = rebrand_routes(
        feed_tables.routes,
        {"SJ"},
        RouteRebrand(agency_name="San Joaquins", short_name="Gold Runner", long_name="Gold Runner", color="D5A021"),
    )

    rebranded = routes.filter(pl.col("route_id") == "SJ").row(0, named=True)
    assert rebranded["route_short_name"] == "Gold Runner"
    assert rebranded["route_long_name"] == "Gold Runner"
    assert rebranded["route_color"] == "D5A021"
    assert rebranded["agency_id"] == "1208"

    assert_frame_equal(routes.filter(pl.col("route_id") != "SJ"), feed_tables.routes.filter(pl.col("route_id") != "SJ"))
