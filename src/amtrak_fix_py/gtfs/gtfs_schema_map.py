from typing import Dict, List

import polars as pl

# columns read by the correction pipeline, per gtfs table.
# any other column found in a table file is carried through as pl.String

agency = {
    "agency_id": pl.String,
    "agency_name": pl.String,
}

calendar = {
    "service_id": pl.String,
    "monday": pl.Boolean,
    "tuesday": pl.Boolean,
    "wednesday": pl.Boolean,
    "thursday": pl.Boolean,
    "friday": pl.Boolean,
    "saturday": pl.Boolean,
    "sunday": pl.Boolean,
    "start_date": pl.Date,
    "end_date": pl.Date,
}

routes = {
    "route_id": pl.String,
    "agency_id": pl.String,
    "route_short_name": pl.String,
    "route_long_name": pl.String,
    "route_type": pl.Int64,
    "route_color": pl.String,
}

shapes = {
    "shape_id": pl.String,
    "shape_pt_lat": pl.Float64,
    "shape_pt_lon": pl.Float64,
    "shape_pt_sequence": pl.Int64,
}

stops = {
    "stop_id": pl.String,
    "stop_name": pl.String,
    "stop_lat": pl.Float64,
    "stop_lon": pl.Float64,
    "stop_timezone": pl.String,
}

stop_times = {
    "trip_id": pl.String,
    "stop_id": pl.String,
    "departure_time": pl.String,
    "stop_sequence": pl.Int64,
}

trips = {
    "trip_id": pl.String,
    "route_id": pl.String,
    "service_id": pl.String,
    "shape_id": pl.String,
    "trip_short_name": pl.String,
    "trip_headsign": pl.String,
}

# columns that may be absent from a table file. they are added as all NULL
optional_columns = {
    "agency.txt": ["agency_id"],
    "routes.txt": ["agency_id", "route_short_name", "route_long_name", "route_color"],
    "stops.txt": ["stop_name", "stop_lat", "stop_lon", "stop_timezone"],
    "trips.txt": ["shape_id", "trip_short_name", "trip_headsign"],
}

# columns derived during load that are never written back to a table file
derived_columns = {
    "stop_times.txt": ["departure_seconds"],
}

# tables written back out after correction. shapes are only referenced
emitted_tables = [
    "agency.txt",
    "stops.txt",
    "routes.txt",
    "trips.txt",
    "stop_times.txt",
    "calendar.txt",
]


def gtfs_schema_map() -> Dict[str, Dict[str, pl.DataType]]:
    """
    Create mapping of gtfs table files to the polars types of the columns
    the correction pipeline reads
    """
    return {
        "agency.txt": agency,
        "calendar.txt": calendar,
        "routes.txt": routes,
        "shapes.txt": shapes,
        "stops.txt": stops,
        "stop_times.txt": stop_times,
        "trips.txt": trips,
    }


def gtfs_schema_list() -> List[str]:
    """
    Get list of gtfs table files required by the correction pipeline
    """
    return list(gtfs_schema_map().keys())


def gtfs_schema(gtfs_table_file: str) -> Dict[str, pl.DataType]:
    """
    Get polars schema for gtfs table file

    :param gtfs_table_file: (ie. stop_times.txt)
    """
    return gtfs_schema_map()[gtfs_table_file]


def required_columns(gtfs_table_file: str) -> List[str]:
    """
    columns that must be present in a gtfs table file

    :param gtfs_table_file: (ie. stop_times.txt)
    """
    optional = optional_columns.get(gtfs_table_file, [])
    return [column for column in gtfs_schema(gtfs_table_file) if column not in optional]
