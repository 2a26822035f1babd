import os
import zipfile
from abc import ABC, abstractmethod
from io import BytesIO
from types import TracebackType
from typing import Dict, List, Optional, Type, Union

import polars as pl

from amtrak_fix_py.gtfs.gtfs_schema_map import emitted_tables, gtfs_schema_list
from amtrak_fix_py.gtfs.tables import CorrectedFeed, FeedTables, load_feed_tables
from amtrak_fix_py.runtime_utils.fix_exception import EmissionError, LoadError
from amtrak_fix_py.runtime_utils.process_logger import ProcessLogger

# fixed modification time of zip archive members, so that the same tables
# always produce the same archive bytes
ZIP_MEMBER_DATE_TIME = (1980, 1, 1, 0, 0, 0)


def source_files(path: str) -> List[str]:
    """
    names of the files of a gtfs feed directory or .zip archive

    :raises LoadError: path does not exist or is not a zip archive
    """
    if os.path.isdir(path):
        return sorted(name for name in os.listdir(path) if os.path.isfile(os.path.join(path, name)))

    if not os.path.isfile(path):
        raise LoadError(f"GTFS feed not found at {path}")

    try:
        with zipfile.ZipFile(path) as zf:
            return sorted(file.filename for file in zf.filelist if not file.is_dir())
    except zipfile.BadZipFile as exception:
        raise LoadError(f"GTFS feed at {path} is not a directory or zip archive") from exception


def source_file_bytes(path: str, file_name: str) -> bytes:
    """
    contents of a single file of a gtfs feed directory or .zip archive
    """
    try:
        if os.path.isdir(path):
            with open(os.path.join(path, file_name), "rb") as f:
                return f.read()

        with zipfile.ZipFile(path) as zf:
            with zf.open(file_name) as f:
                return f.read()
    except (OSError, KeyError, zipfile.BadZipFile) as exception:
        raise LoadError(f"Unable to read {file_name} from {path}") from exception


def table_from_bytes(table_bytes: bytes) -> pl.DataFrame:
    """
    create an all pl.String frame from the contents of a gtfs table file

    values containing only spaces are converted to NULL
    """
    frame = pl.read_csv(BytesIO(table_bytes), infer_schema=False, has_header=True)

    return frame.with_columns(
        pl.when(pl.col(pl.String).str.replace(r"\s*", "", n=1).str.len_chars() == 0)
        .then(None)
        .otherwise(pl.col(pl.String))
        .name.keep()
    )


def read_raw_tables(path: str) -> Dict[str, pl.DataFrame]:
    """
    read the gtfs table files used by the correction pipeline from a
    directory or .zip archive. tables missing from the feed are left out of
    the result.

    :param path: local gtfs directory or .zip archive

    :return gtfs table file (ie. trips.txt) -> all pl.String frame
    """
    available = set(source_files(path))

    raw_frames: Dict[str, pl.DataFrame] = {}
    for gtfs_table_file in gtfs_schema_list():
        if gtfs_table_file not in available:
            continue
        try:
            raw_frames[gtfs_table_file] = table_from_bytes(source_file_bytes(path, gtfs_table_file))
        except pl.exceptions.PolarsError as exception:
            raise LoadError(f"Unable to parse {gtfs_table_file} from {path}: {exception}") from exception

    return raw_frames


def read_feed(path: str) -> FeedTables:
    """
    load a gtfs feed directory or .zip archive into FeedTables

    :raises LoadError: feed or table can not be read
    :raises MalformedFeedError: table missing or failing schema validation
    :raises ReferentialError: reference between tables does not resolve
    """
    logger = ProcessLogger("read_feed", path=path)
    logger.log_start()

    try:
        raw_frames = read_raw_tables(path)
        logger.add_metadata(tables_found=len(raw_frames), print_log=False)
        feed = load_feed_tables(raw_frames)
    except Exception as exception:
        logger.log_failure(exception)
        raise

    logger.log_complete()
    return feed


class TableSink(ABC):
    """
    Destination for the files of a corrected feed

    a sink is a context manager, files are only guaranteed to be written after
    it is closed
    """

    def __init__(self, path: str) -> None:
        self.path = path

    @abstractmethod
    def write_file(self, file_name: str, contents: bytes) -> None:
        """write a single file of the feed"""

    def close(self) -> None:
        """finish writing the feed"""

    def __enter__(self) -> "TableSink":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_value: Optional[BaseException],
        traceback: Optional[TracebackType],
    ) -> None:
        self.close()


class DirectoryTableSink(TableSink):
    """write feed files into a local directory, created if needed"""

    def __init__(self, path: str) -> None:
        super().__init__(path)
        try:
            os.makedirs(path, exist_ok=True)
        except OSError as exception:
            raise EmissionError(f"Unable to create output directory {path}: {exception}") from exception

    def write_file(self, file_name: str, contents: bytes) -> None:
        try:
            with open(os.path.join(self.path, file_name), "wb") as f:
                f.write(contents)
        except OSError as exception:
            raise EmissionError(f"Unable to write {file_name} to {self.path}: {exception}") from exception


class ZipTableSink(TableSink):
    """write feed files into a local .zip archive, replacing any existing archive"""

    def __init__(self, path: str) -> None:
        super().__init__(path)
        try:
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            self.zip_file = zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED)
        except OSError as exception:
            raise EmissionError(f"Unable to create output archive {path}: {exception}") from exception

    def write_file(self, file_name: str, contents: bytes) -> None:
        member = zipfile.ZipInfo(file_name, date_time=ZIP_MEMBER_DATE_TIME)
        member.compress_type = zipfile.ZIP_DEFLATED
        try:
            self.zip_file.writestr(member, contents)
        except OSError as exception:
            raise EmissionError(f"Unable to write {file_name} to {self.path}: {exception}") from exception

    def close(self) -> None:
        try:
            self.zip_file.close()
        except OSError as exception:
            raise EmissionError(f"Unable to finish output archive {self.path}: {exception}") from exception


def sink_for_path(path: str) -> TableSink:
    """ZipTableSink for paths ending in .zip, DirectoryTableSink otherwise"""
    if path.lower().endswith(".zip"):
        return ZipTableSink(path)
    return DirectoryTableSink(path)


def table_to_bytes(corrected: CorrectedFeed, gtfs_table_file: str) -> bytes:
    """
    serialize a corrected table in gtfs csv format

    booleans are written as 0/1, dates as YYYYMMDD and NULL as an empty
    field. derived columns are not written.
    """
    frame = (
        corrected.table(gtfs_table_file)
        .select(corrected.emission_columns(gtfs_table_file))
        .with_columns(
            pl.col(pl.Boolean).cast(pl.Int8),
            pl.col(pl.Date).dt.strftime("%Y%m%d"),
        )
    )

    buffer = BytesIO()
    frame.write_csv(buffer, include_header=True, line_terminator="\n")
    return buffer.getvalue()


def write_feed(
    corrected: CorrectedFeed,
    destination: Union[str, TableSink],
    passthrough_source: Optional[str] = None,
) -> List[str]:
    """
    write the six corrected tables of a feed

    :param corrected: tables returned by the correction pipeline
    :param destination: TableSink, or local path of a directory or .zip archive
    :param passthrough_source: gtfs feed the corrected tables were read from.
        if provided, every other file of the source (ie. shapes.txt,
        feed_info.txt) is copied unchanged so the output is a complete feed.

    :return names of the files written

    :raises EmissionError: a file could not be written, output is invalid
    """
    if isinstance(destination, TableSink):
        sink = destination
    else:
        sink = sink_for_path(destination)

    logger = ProcessLogger(
        "write_feed",
        destination=sink.path,
        passthrough_source=passthrough_source,
    )
    logger.log_start()

    written: List[str] = []
    try:
        with sink:
            for gtfs_table_file in emitted_tables:
                sink.write_file(gtfs_table_file, table_to_bytes(corrected, gtfs_table_file))
                written.append(gtfs_table_file)

            if passthrough_source is not None:
                for file_name in source_files(passthrough_source):
                    if file_name in emitted_tables:
                        continue
                    sink.write_file(file_name, source_file_bytes(passthrough_source, file_name))
                    written.append(file_name)
    except OSError as exception:
        wrapped = EmissionError(f"Unable to write feed to {sink.path}: {exception}")
        logger.log_failure(wrapped)
        raise wrapped from exception
    except Exception as exception:
        logger.log_failure(exception)
        raise

    logger.add_metadata(files_written=len(written), print_log=False)
    logger.log_complete()
    return written

