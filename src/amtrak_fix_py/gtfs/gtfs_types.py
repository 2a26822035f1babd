from enum import Enum


class RouteType(Enum):
    """
    routes.txt route_type values

    Amtrak trains are published as RAIL, Thruway connections as BUS. Only
    rail trips are checked for midnight crossings.
    https://gtfs.org/documentation/schedule/reference/#routestxt
    """

    LIGHT_RAIL = 0
    SUBWAY_METRO = 1
    RAIL = 2
    BUS = 3
    FERRY = 4
    CABLE_TRAM = 5
    AERIAL_LIFT = 6
    FUNICULAR = 7
    TROLLEYBUS = 11
    MONORAIL = 12


# extended route types for railway service, ie. 102 long distance trains
# https://developers.google.com/transit/gtfs/reference/extended-route-types
EXTENDED_RAIL_ROUTE_TYPES = range(100, 200)


def is_rail_route_type(route_type: int) -> bool:
    """basic RAIL route type, or any extended railway service route type"""
    return route_type == RouteType.RAIL.value or route_type in EXTENDED_RAIL_ROUTE_TYPES


# day of week columns of calendar.txt, in datetime.weekday() order
WEEKDAY_COLUMNS = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)
