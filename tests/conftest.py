"""
this file contains fixtures that are intended to be used across multiple test
files

the test feed is a small slice of the Amtrak schedule with one example of
every defect the correction pipeline handles:
    - T_SL_2: Sunset Limited leaving Los Angeles at 00:30, broken shape
    - T_CZ_5 / T_CZ_6: California Zephyr leaving Denver at 01:00 / 02:30
    - T_CAS_501: Amtrak Cascades, shape always removed
    - T_SUR_768: Pacific Surfliner leaving San Diego at 00:45, exempt
    - T_HFD_400: Hartford Line, excluded route
    - T_SJ_711 / T_SJ_3711: San Joaquins, rebranded. 3711 does not operate
    - T_MAPLE_63: Maple Leaf, operated by excluded agency VIA Rail Canada
    - T_BUS_6000: Thruway bus leaving Phoenix at 00:30, not rail
"""

import os
from pathlib import Path
from typing import Callable, Dict

import polars as pl
import pytest

from amtrak_fix_py.fixes.config import FixConfig
from amtrak_fix_py.gtfs.feed_io import table_from_bytes
from amtrak_fix_py.gtfs.tables import FeedTables, load_feed_tables

FEED_FILES = {
    "agency.txt": """agency_id,agency_name,agency_url,agency_timezone
51,Amtrak,https://www.amtrak.com,America/New_York
1208,San Joaquins,https://amtraksanjoaquins.com,America/Los_Angeles
999,VIA Rail Canada,https://www.viarail.ca,America/Toronto
""",
    "routes.txt": """route_id,agency_id,route_short_name,route_long_name,route_type,route_url
NEC,51,,Northeast Regional,2,https://www.amtrak.com/northeast-regional
SL,51,,Sunset Limited,2,
CZ,51,,California Zephyr,2,
CAS,51,,Amtrak Cascades,2,
SUR,51,,Pacific Surfliner,2,
HFD,51,,Hartford Line,2,
SJ,1208,SJ,San Joaquins,2,
MAPLE,999,,Maple Leaf,2,
BUS,51,,Thruway Bus,3,
""",
    "calendar.txt": """service_id,monday,tuesday,wednesday,thursday,friday,saturday,sunday,start_date,end_date
WKDY,1,1,1,1,1,0,0,20260101,20261231
DAILY,1,1,1,1,1,1,1,20260101,20261231
SUWEFR,0,0,1,0,1,0,1,20260105,20261130
""",
    "trips.txt": """route_id,service_id,trip_id,trip_short_name,trip_headsign,shape_id,bikes_allowed
NEC,WKDY,T_NEC_171,171,Washington,SHP_NEC,1
SL,SUWEFR,T_SL_2,2,New Orleans,SHP_SL,1
CZ,DAILY,T_CZ_5,5,Emeryville,SHP_CZ,1
CZ,DAILY,T_CZ_6,6,Chicago,SHP_CZ,1
CAS,DAILY,T_CAS_501,501,Portland,SHP_CAS,1
SUR,DAILY,T_SUR_768,768,San Luis Obispo,SHP_SUR,1
HFD,WKDY,T_HFD_400,400,Springfield,,1
SJ,DAILY,T_SJ_711,711,Sacramento,,1
SJ,DAILY,T_SJ_3711,3711,Sacramento,,1
MAPLE,DAILY,T_MAPLE_63,63,Toronto,,1
BUS,DAILY,T_BUS_6000,6000,Phoenix,,2
""",
    "stop_times.txt": """trip_id,arrival_time,departure_time,stop_id,stop_sequence
T_NEC_171,07:00:00,07:00:00,NYP,1
T_NEC_171,10:30:00,10:30:00,WAS,2
T_SL_2,03:00:00,03:00:00,SAN,2
T_SL_2,00:30:00,00:30:00,LAX,1
T_CZ_5,01:00:00,01:00:00,DEN,1
T_CZ_5,20:00:00,20:00:00,SAC,2
T_CZ_6,02:30:00,02:30:00,DEN,1
T_CZ_6,21:00:00,21:00:00,SAC,2
T_CAS_501,06:00:00,06:00:00,SEA,1
T_CAS_501,23:00:00,23:00:00,SAC,2
T_SUR_768,00:45:00,00:45:00,SAN,1
T_SUR_768,03:30:00,03:30:00,LAX,2
T_HFD_400,06:00:00,06:00:00,NHV,1
T_HFD_400,08:00:00,08:00:00,NYP,2
T_SJ_711,07:00:00,07:00:00,OKJ,1
T_SJ_711,08:45:00,08:45:00,SAC,2
T_SJ_3711,08:00:00,08:00:00,OKJ,1
T_SJ_3711,09:45:00,09:45:00,SAC,2
T_MAPLE_63,07:15:00,07:15:00,NYP,1
T_MAPLE_63,19:40:00,19:40:00,TWO,2
T_BUS_6000,00:30:00,00:30:00,PHX,1
T_BUS_6000,07:00:00,07:00:00,LAX,2
""",
    "stops.txt": """stop_id,stop_name,stop_lat,stop_lon,stop_timezone,wheelchair_boarding
NYP,New York Penn Station,40.750580,-73.993584,America/New_York,1
WAS,Washington Union Station,38.897460,-77.006430,America/New_York,1
NHV,New Haven Union Station,41.297714,-72.926780,America/New_York,1
LAX,Los Angeles Union Station,34.055860,-118.234620,America/Los_Angeles,1
SAN,San Diego Santa Fe Depot,32.716820,-117.169650,America/Los_Angeles,1
DEN,Denver Union Station,39.753290,-105.000690,America/Denver,1
SEA,Seattle King Street Station,47.598445,-122.330161,America/Los_Angeles,1
SAC,Sacramento,38.500000,-121.400000,America/Los_Angeles,1
OKJ,Oakland,37.700000,-122.200000,America/Los_Angeles,1
TWO,Toronto Union Station,43.645195,-79.380600,America/Toronto,1
PHX,Phoenix Sky Harbor,33.434278,-112.011590,America/Phoenix,0
""",
    "shapes.txt": """shape_id,shape_pt_lat,shape_pt_lon,shape_pt_sequence
SHP_NEC,40.75,-73.99,1
SHP_NEC,40.70,-74.05,2
SHP_NEC,40.64,-74.13,3
SHP_SL,34.05,-118.23,1
SHP_SL,34.00,-118.20,2
SHP_SL,32.22,-110.97,3
SHP_CZ,39.75,-105.00,1
SHP_CZ,39.70,-105.05,2
SHP_CAS,47.60,-122.33,1
SHP_CAS,47.55,-122.30,2
SHP_SUR,32.71,-117.17,1
SHP_SUR,32.75,-117.20,2
""",
    "feed_info.txt": """feed_publisher_name,feed_publisher_url,feed_lang,feed_version
Amtrak,https://www.amtrak.com,en,20260105
""",
}


@pytest.fixture(name="feed_files")
def fixture_feed_files() -> Dict[str, str]:
    """contents of every file of the test feed, safe to modify per test"""
    return dict(FEED_FILES)


@pytest.fixture(name="load_feed")
def fixture_load_feed() -> Callable[[Dict[str, str]], FeedTables]:
    """function to create FeedTables from gtfs file contents"""

    def load_feed(files: Dict[str, str]) -> FeedTables:
        return load_feed_tables(raw_tables_from_text(files))

    return load_feed


@pytest.fixture(name="feed_tables")
def fixture_feed_tables(feed_files: Dict[str, str]) -> FeedTables:
    """the test feed loaded into FeedTables"""
    return load_feed_tables(raw_tables_from_text(feed_files))


@pytest.fixture(name="config")
def fixture_config() -> FixConfig:
    """production rule set"""
    return FixConfig.default()


@pytest.fixture(name="write_feed_dir")
def fixture_write_feed_dir(tmp_path: Path) -> Callable[[Dict[str, str]], str]:
    """function to write gtfs file contents into a temporary feed directory"""

    def write_feed_dir(files: Dict[str, str]) -> str:
        feed_dir = tmp_path / "input_feed"
        feed_dir.mkdir(exist_ok=True)
        for file_name, contents in files.items():
            (feed_dir / file_name).write_text(contents, encoding="utf8")
        return os.fspath(feed_dir)

    return write_feed_dir


def raw_tables_from_text(files: Dict[str, str]) -> Dict[str, pl.DataFrame]:
    """all pl.String frames for the gtfs table files of a feed"""
    return {
        file_name: table_from_bytes(contents.encode("utf8"))
        for file_name, contents in files.items()
        if file_name != "feed_info.txt"
    }
