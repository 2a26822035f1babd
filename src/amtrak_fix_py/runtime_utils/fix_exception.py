from typing import Iterable


class FeedFixException(Exception):
    """
    Generic exception for the amtrak_fix_py library
    """


class LoadError(FeedFixException):
    """
    A feed could not be loaded, usually because a required table is missing
    """


class MalformedFeedError(LoadError):
    """
    A feed table is present but can not be used by the correction pipeline
    """

    def __init__(self, table: str, reason: str):
        message = f"Malformed {table} table: {reason}"
        super().__init__(message)
        self.table = table
        self.reason = reason


class ReferentialError(FeedFixException):
    """
    A record references another record that does not exist, or is missing a
    field required to resolve a reference
    """

    def __init__(self, table: str, column: str, missing: Iterable[str]):
        missing = sorted(set(missing))
        preview = ", ".join(missing[:10])
        if len(missing) > 10:
            preview += f", ... ({len(missing)} total)"
        message = f"Unresolved {table}.{column} references: {preview}"
        super().__init__(message)
        self.table = table
        self.column = column
        self.missing = missing


class UnsupportedTimezoneError(FeedFixException):
    """
    A rail trip starts in a timezone with no configured grace hours
    """

    def __init__(self, timezone: str, trip_id: str):
        message = f"Timezone {timezone} of first stop of trip {trip_id} has no midnight grace hours"
        super().__init__(message)
        self.timezone = timezone
        self.trip_id = trip_id


class EmissionError(FeedFixException):
    """
    A corrected table could not be written. Output of the run is invalid.
    """


class ConfigurationError(FeedFixException):
    """
    A correction configuration file could not be applied
    """
