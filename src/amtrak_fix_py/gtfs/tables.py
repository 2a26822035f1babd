from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Type

import dataframely as dy
import polars as pl

from amtrak_fix_py.gtfs.gtfs_schema_map import (
    derived_columns,
    gtfs_schema,
    gtfs_schema_list,
    optional_columns,
    required_columns,
)
from amtrak_fix_py.runtime_utils.fix_exception import MalformedFeedError, ReferentialError
from amtrak_fix_py.runtime_utils.process_logger import ProcessLogger

Row = Dict[str, Any]


class AgencyTable(dy.Schema):
    """agency.txt records. agency_id is optional but unique when present."""

    agency_id = dy.String(nullable=True)
    agency_name = dy.String(nullable=False)


class RoutesTable(dy.Schema):
    """routes.txt records"""

    route_id = dy.String(primary_key=True)
    agency_id = dy.String(nullable=True)
    route_short_name = dy.String(nullable=True)
    route_long_name = dy.String(nullable=True)
    route_type = dy.Int64(nullable=False, min=0)
    route_color = dy.String(nullable=True)


class CalendarTable(dy.Schema):
    """calendar.txt records"""

    service_id = dy.String(primary_key=True)
    monday = dy.Bool(nullable=False)
    tuesday = dy.Bool(nullable=False)
    wednesday = dy.Bool(nullable=False)
    thursday = dy.Bool(nullable=False)
    friday = dy.Bool(nullable=False)
    saturday = dy.Bool(nullable=False)
    sunday = dy.Bool(nullable=False)
    start_date = dy.Date(nullable=False)
    end_date = dy.Date(nullable=False)


class TripsTable(dy.Schema):
    """trips.txt records"""

    trip_id = dy.String(primary_key=True)
    route_id = dy.String(nullable=False)
    service_id = dy.String(nullable=False)
    shape_id = dy.String(nullable=True)
    trip_short_name = dy.String(nullable=True)
    trip_headsign = dy.String(nullable=True)


class StopTimesTable(dy.Schema):
    """stop_times.txt records, with departure_time parsed to seconds after midnight"""

    trip_id = dy.String(primary_key=True)
    stop_sequence = dy.Int64(primary_key=True, min=0)
    stop_id = dy.String(nullable=False)
    departure_time = dy.String(nullable=True)
    departure_seconds = dy.Int64(nullable=True, min=0)


class StopsTable(dy.Schema):
    """stops.txt records"""

    stop_id = dy.String(primary_key=True)
    stop_name = dy.String(nullable=True)
    stop_lat = dy.Float64(nullable=True, min=-90.0, max=90.0)
    stop_lon = dy.Float64(nullable=True, min=-180.0, max=180.0)
    stop_timezone = dy.String(nullable=True)


class ShapesTable(dy.Schema):
    """shapes.txt points"""

    shape_id = dy.String(primary_key=True)
    shape_pt_sequence = dy.Int64(primary_key=True, min=0)
    shape_pt_lat = dy.Float64(nullable=False, min=-90.0, max=90.0)
    shape_pt_lon = dy.Float64(nullable=False, min=-180.0, max=180.0)


table_schemas: Dict[str, Type[dy.Schema]] = {
    "agency.txt": AgencyTable,
    "calendar.txt": CalendarTable,
    "routes.txt": RoutesTable,
    "shapes.txt": ShapesTable,
    "stops.txt": StopsTable,
    "stop_times.txt": StopTimesTable,
    "trips.txt": TripsTable,
}

# FeedTables attribute holding each gtfs table file
table_attributes = {
    "agency.txt": "agency",
    "calendar.txt": "calendar",
    "routes.txt": "routes",
    "shapes.txt": "shapes",
    "stops.txt": "stops",
    "stop_times.txt": "stop_times",
    "trips.txt": "trips",
}


# pylint: disable=R0902
# Too many instance attributes
@dataclass
class FeedTables:
    """
    The seven gtfs tables read by the correction pipeline, with lookup indexes

    frames keep the row order of their source files. `columns` holds the
    column order of each source file so tables can be written back out with
    their original schema.
    """

    agency: pl.DataFrame
    routes: pl.DataFrame
    trips: pl.DataFrame
    stop_times: pl.DataFrame
    stops: pl.DataFrame
    shapes: pl.DataFrame
    calendar: pl.DataFrame
    columns: Dict[str, List[str]] = field(default_factory=dict)

    route_index: Dict[str, Row] = field(init=False)
    calendar_index: Dict[str, Row] = field(init=False)
    agency_index: Dict[str, Row] = field(init=False)
    trip_index: Dict[str, Row] = field(init=False)
    stop_index: Dict[str, Row] = field(init=False)
    first_stop_times: Dict[str, Row] = field(init=False)

    def __post_init__(self) -> None:
        for gtfs_table_file in gtfs_schema_list():
            if gtfs_table_file not in self.columns:
                derived = derived_columns.get(gtfs_table_file, [])
                self.columns[gtfs_table_file] = [
                    column for column in self.table(gtfs_table_file).columns if column not in derived
                ]

        self.route_index = _index(self.routes, "route_id")
        self.calendar_index = _index(self.calendar, "service_id")
        self.agency_index = _index(self.agency.filter(pl.col("agency_id").is_not_null()), "agency_id")
        self.trip_index = _index(self.trips, "trip_id")
        self.stop_index = _index(self.stops, "stop_id")
        self.first_stop_times = _index(
            self.stop_times.sort(["trip_id", "stop_sequence"]).unique("trip_id", keep="first", maintain_order=True),
            "trip_id",
        )

    def table(self, gtfs_table_file: str) -> pl.DataFrame:
        """get the frame for a gtfs table file (ie. trips.txt)"""
        return getattr(self, table_attributes[gtfs_table_file])


def _index(frame: pl.DataFrame, key: str) -> Dict[str, Row]:
    """map each key of a frame to its row"""
    return frame.rows_by_key(key, named=True, include_key=True, unique=True)


def departure_seconds(column: str = "departure_time") -> pl.Expr:
    """
    transform time string in H:MM:SS or HH:MM:SS format to seconds after
    midnight. hours may exceed 23 for service continuing past midnight.
    unparseable values become NULL.
    """
    parts = pl.col(column).str.strip_chars().str.extract_groups(r"^(\d+):(\d{2}):(\d{2})$")
    return (
        parts.struct.field("1").cast(pl.Int64) * 3600
        + parts.struct.field("2").cast(pl.Int64) * 60
        + parts.struct.field("3").cast(pl.Int64)
    )


def _cast_expression(column: str, dtype: pl.DataType) -> pl.Expr:
    """expression to cast a raw string column into its schema type"""
    if dtype == pl.Boolean:
        return pl.col(column).str.strip_chars().replace_strict({"0": False, "1": True}, return_dtype=pl.Boolean)
    if dtype == pl.Date:
        return pl.col(column).str.strip_chars().str.strptime(pl.Date, "%Y%m%d")
    if dtype == pl.String:
        return pl.col(column)
    return pl.col(column).str.strip_chars().cast(dtype)


def cast_table(gtfs_table_file: str, raw_frame: pl.DataFrame) -> pl.DataFrame:
    """
    cast the columns of a raw all-string table frame that the correction
    pipeline reads to their schema types

    missing optional columns are added with all NULL values. columns not in
    the schema are left as strings.

    :param gtfs_table_file: (ie. stop_times.txt)
    :param raw_frame: table as read from the table file, all columns pl.String

    :return typed frame
    """
    missing = [column for column in required_columns(gtfs_table_file) if column not in raw_frame.columns]
    if missing:
        raise MalformedFeedError(gtfs_table_file, f"missing required columns {missing}")

    frame = raw_frame.with_columns(
        pl.lit(None, dtype=pl.String).alias(column)
        for column in optional_columns.get(gtfs_table_file, [])
        if column not in raw_frame.columns
    )

    try:
        frame = frame.with_columns(
            _cast_expression(column, dtype).alias(column) for column, dtype in gtfs_schema(gtfs_table_file).items()
        )
    except pl.exceptions.PolarsError as exception:
        raise MalformedFeedError(gtfs_table_file, f"unparseable column value ({exception})") from exception

    if gtfs_table_file == "stop_times.txt":
        frame = frame.with_columns(departure_seconds().alias("departure_seconds"))
        bad_times = frame.filter(pl.col("departure_time").is_not_null() & pl.col("departure_seconds").is_null())
        if bad_times.height > 0:
            raise MalformedFeedError(
                gtfs_table_file,
                f"unparseable departure_time values {bad_times.get_column('departure_time').head(5).to_list()}",
            )

    return frame


def validate_table(gtfs_table_file: str, frame: pl.DataFrame) -> None:
    """
    check a typed table frame against its dataframely schema

    :raises MalformedFeedError: if any record is rejected
    """
    schema = table_schemas[gtfs_table_file]
    logger = ProcessLogger("validate_table", table_file=gtfs_table_file, input_rows=frame.height)
    logger.log_start()

    _, validation_errors = logger.log_dataframely_filter_results(
        schema.filter(frame.select(schema.column_names()), cast=True)
    )

    if validation_errors:
        exception = MalformedFeedError(gtfs_table_file, f"records failed validation rules {validation_errors}")
        logger.log_failure(exception)
        raise exception

    if gtfs_table_file == "agency.txt":
        agency_ids = frame.get_column("agency_id").drop_nulls()
        duplicates = agency_ids.filter(agency_ids.is_duplicated()).unique(maintain_order=True).to_list()
        if duplicates:
            exception = MalformedFeedError(gtfs_table_file, f"duplicate agency_id values {duplicates}")
            logger.log_failure(exception)
            raise exception

    logger.log_complete()


def unresolved_references(
    frame: pl.DataFrame,
    column: str,
    target: pl.DataFrame,
    target_column: str,
) -> List[str]:
    """
    values of frame[column] that are not found in target[target_column].
    NULL values reference nothing and are never reported.
    """
    return (
        frame.select(column)
        .drop_nulls()
        .unique(maintain_order=True)
        .join(
            target.select(pl.col(target_column).alias(column)),
            on=column,
            how="anti",
        )
        .get_column(column)
        .to_list()
    )


def check_references(
    agency: pl.DataFrame,
    routes: pl.DataFrame,
    trips: pl.DataFrame,
    stop_times: pl.DataFrame,
    stops: pl.DataFrame,
    calendar: pl.DataFrame,
) -> None:
    """
    check every reference of the gtfs reference graph resolves

    trip -> route, trip -> calendar, stop_time -> trip, stop_time -> stop,
    route -> agency

    trip -> shape is not checked, shapes are only referenced

    :raises ReferentialError: on the first unresolved reference
    """
    references = (
        ("trips.txt", "route_id", trips, routes, "route_id"),
        ("trips.txt", "service_id", trips, calendar, "service_id"),
        ("stop_times.txt", "trip_id", stop_times, trips, "trip_id"),
        ("stop_times.txt", "stop_id", stop_times, stops, "stop_id"),
        ("routes.txt", "agency_id", routes, agency, "agency_id"),
    )
    for table_file, column, frame, target, target_column in references:
        missing = unresolved_references(frame, column, target, target_column)
        if missing:
            raise ReferentialError(table_file, column, missing)


def load_feed_tables(raw_frames: Mapping[str, pl.DataFrame]) -> FeedTables:
    """
    create FeedTables from raw all-string table frames

    :param raw_frames: gtfs table file name (ie. trips.txt) -> frame

    :raises MalformedFeedError: required table or column missing, unparseable
        values, schema validation failure or a trip without stop times
    :raises ReferentialError: a reference between tables does not resolve
    """
    logger = ProcessLogger("load_feed_tables", table_count=len(raw_frames))
    logger.log_start()

    try:
        typed: Dict[str, pl.DataFrame] = {}
        columns: Dict[str, List[str]] = {}
        for gtfs_table_file in gtfs_schema_list():
            if gtfs_table_file not in raw_frames:
                raise MalformedFeedError(gtfs_table_file, "table not found in feed")
            raw_frame = raw_frames[gtfs_table_file]
            columns[gtfs_table_file] = list(raw_frame.columns)
            typed[gtfs_table_file] = cast_table(gtfs_table_file, raw_frame)
            validate_table(gtfs_table_file, typed[gtfs_table_file])
            logger.add_metadata(**{gtfs_table_file.replace(".txt", "_rows"): raw_frame.height}, print_log=False)

        trips = typed["trips.txt"]
        stop_times = typed["stop_times.txt"]

        # a trip without stop times can not be checked for midnight crossing
        no_stop_times = unresolved_references(trips, "trip_id", stop_times, "trip_id")
        if no_stop_times:
            raise MalformedFeedError("trips.txt", f"trips without stop times {no_stop_times[:10]}")

        check_references(
            agency=typed["agency.txt"],
            routes=typed["routes.txt"],
            trips=trips,
            stop_times=stop_times,
            stops=typed["stops.txt"],
            calendar=typed["calendar.txt"],
        )

        feed = FeedTables(
            agency=typed["agency.txt"],
            routes=typed["routes.txt"],
            trips=trips,
            stop_times=stop_times,
            stops=typed["stops.txt"],
            shapes=typed["shapes.txt"],
            calendar=typed["calendar.txt"],
            columns=columns,
        )
    except Exception as exception:
        logger.log_failure(exception)
        raise

    logger.log_complete()
    return feed


@dataclass
class CorrectedFeed:
    """
    The six gtfs tables emitted by the correction pipeline

    shapes are only referenced by trips and are not emitted
    """

    agency: pl.DataFrame
    routes: pl.DataFrame
    trips: pl.DataFrame
    stop_times: pl.DataFrame
    stops: pl.DataFrame
    calendar: pl.DataFrame
    columns: Dict[str, List[str]] = field(default_factory=dict)

    def table(self, gtfs_table_file: str) -> pl.DataFrame:
        """get the frame for a gtfs table file (ie. trips.txt)"""
        return getattr(self, table_attributes[gtfs_table_file])

    def emission_columns(self, gtfs_table_file: str) -> List[str]:
        """
        columns to write for a table file

        the source file's columns in their original order, followed by any
        schema column the source file did not have but a correction filled in
        (ie. route_color on a rebranded route)
        """
        frame = self.table(gtfs_table_file)
        original = self.columns.get(gtfs_table_file)
        if original is None:
            derived = derived_columns.get(gtfs_table_file, [])
            return [column for column in frame.columns if column not in derived]

        filled = [
            column
            for column in gtfs_schema(gtfs_table_file)
            if column not in original
            and column in frame.columns
            and frame.get_column(column).null_count() < frame.height
        ]
        return list(original) + filled

    def check_references(self) -> None:
        """
        :raises ReferentialError: a reference between emitted tables does not resolve
        """
        check_references(
            agency=self.agency,
            routes=self.routes,
            trips=self.trips,
            stop_times=self.stop_times,
            stops=self.stops,
            calendar=self.calendar,
        )
