#!/usr/bin/env python

import argparse
import logging
import os
import sys
from typing import List, Optional

from amtrak_fix_py.fixes.config import FixConfig, config_from_json
from amtrak_fix_py.fixes.diagnostics import diagnostics_frame
from amtrak_fix_py.fixes.orchestrator import FeedFixPipeline
from amtrak_fix_py.gtfs.feed_io import read_feed, write_feed
from amtrak_fix_py.runtime_utils.fix_exception import FeedFixException
from amtrak_fix_py.runtime_utils.process_logger import ProcessLogger

logging.getLogger().setLevel("INFO")

DESCRIPTION = """Correct known defects of the Amtrak GTFS schedule feed"""


def parse_args(args: List[str]) -> argparse.Namespace:
    """parse args for running this entrypoint script"""
    parser = argparse.ArgumentParser(description=DESCRIPTION)
    parser.add_argument(
        "--input",
        dest="input",
        required=True,
        help="gtfs feed directory or .zip archive to correct",
    )
    parser.add_argument(
        "--output",
        dest="output",
        required=True,
        help="directory or .zip archive to write the corrected feed to",
    )
    parser.add_argument(
        "--config",
        dest="config",
        default=None,
        help="json file of correction rule settings to override",
    )
    parser.add_argument(
        "--no-passthrough",
        dest="passthrough",
        action="store_false",
        help="only write the corrected tables, not the other files of the input feed",
    )
    parser.add_argument(
        "--workers",
        dest="workers",
        type=int,
        default=1,
        help="number of threads used to run anomaly detectors",
    )

    return parser.parse_args(args)


def main(args: argparse.Namespace) -> int:
    """read, correct and write a feed. returns the process exit code."""
    main_process_logger = ProcessLogger("main", **vars(args))
    main_process_logger.log_start()

    try:
        config = FixConfig.default() if args.config is None else config_from_json(args.config)
        feed = read_feed(args.input)

        result = FeedFixPipeline(config=config, max_workers=args.workers).run(feed)

        for diagnostic in diagnostics_frame(result.diagnostics).iter_rows(named=True):
            logging.info(", ".join(f"{key}={value}" for key, value in diagnostic.items()))

        passthrough_source: Optional[str] = args.input if args.passthrough else None
        written = write_feed(result.feed, args.output, passthrough_source=passthrough_source)
    except FeedFixException as exception:
        main_process_logger.log_failure(exception)
        return 1

    main_process_logger.add_metadata(
        diagnostics=len(result.diagnostics),
        files_written=len(written),
        print_log=False,
    )
    main_process_logger.log_complete()
    return 0


def start() -> None:
    """configure and run the feed correction process"""
    # parse arguments from the command line
    parsed_args = parse_args(sys.argv[1:])

    # configure the environment
    os.environ["SERVICE_NAME"] = "amtrak_fix"

    # run main method
    sys.exit(main(parsed_args))


if __name__ == "__main__":
    start()
