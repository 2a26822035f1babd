"""
Feed correction pipeline

Detection runs once against the loaded tables. Corrections are then applied
one table at a time, in reference graph order, so that removals cascade from
trips to stop times and every emitted reference still resolves.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

import polars as pl

from amtrak_fix_py.fixes.config import FixConfig
from amtrak_fix_py.fixes.corrections import calendar_frame
from amtrak_fix_py.fixes.diagnostics import Diagnostic
from amtrak_fix_py.fixes.rules import CorrectionState, FeedRule, default_rules
from amtrak_fix_py.gtfs.tables import CorrectedFeed, FeedTables
from amtrak_fix_py.runtime_utils.process_logger import ProcessLogger


@dataclass
class FixResult:
    """corrected tables of a pipeline run and everything reported along the way"""

    feed: CorrectedFeed
    diagnostics: List[Diagnostic] = field(default_factory=list)
    kept_trip_ids: Set[str] = field(default_factory=set)


def detect_all(feed: FeedTables, rules: Sequence[FeedRule], max_workers: int = 1) -> Dict[str, Any]:
    """
    run the detector of every rule against the feed

    detectors only read the feed, so with max_workers > 1 they are run in a
    thread pool. results are keyed by rule name and do not depend on
    max_workers.
    """
    if max_workers <= 1:
        return {rule.name: rule.detect(feed) for rule in rules}

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {rule.name: executor.submit(rule.detect, feed) for rule in rules}
        return {name: future.result() for name, future in futures.items()}


class FeedFixPipeline:
    """
    Apply a list of FeedRules to a feed

    rules default to default_rules(config). config defaults to
    FixConfig.default().
    """

    def __init__(
        self,
        config: Optional[FixConfig] = None,
        rules: Optional[Sequence[FeedRule]] = None,
        max_workers: int = 1,
    ) -> None:
        self.config = config if config is not None else FixConfig.default()
        self.rules: List[FeedRule] = list(rules) if rules is not None else default_rules(self.config)
        self.max_workers = max_workers

        names = [rule.name for rule in self.rules]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Rule names must be unique, found duplicates {duplicates}")

    def _pass(
        self,
        process_name: str,
        frame: pl.DataFrame,
        correct: Callable[[pl.DataFrame], pl.DataFrame],
    ) -> pl.DataFrame:
        """run a single correction pass over a table with its own process logger"""
        logger = ProcessLogger(process_name, input_rows=frame.height)
        logger.log_start()
        try:
            frame = correct(frame)
        except Exception as exception:
            logger.log_failure(exception)
            raise
        logger.add_metadata(output_rows=frame.height, print_log=False)
        logger.log_complete()
        return frame

    def detect(self, feed: FeedTables) -> CorrectionState:
        """run every detector and collect the diagnostics for what they flagged"""
        logger = ProcessLogger(
            "detect_anomalies",
            rules=", ".join(str(rule) for rule in self.rules),
            max_workers=self.max_workers,
        )
        logger.log_start()
        try:
            state = CorrectionState(findings=detect_all(feed, self.rules, self.max_workers))
            for rule in self.rules:
                state.diagnostics.extend(rule.diagnose(state.findings[rule.name]))
        except Exception as exception:
            logger.log_failure(exception)
            raise
        logger.add_metadata(diagnostics=len(state.diagnostics), print_log=False)
        logger.log_complete()
        return state

    def run(self, feed: FeedTables) -> FixResult:
        """
        detect and correct the anomalies of a feed

        :raises ReferentialError: the corrected tables break a reference or
            still contain a corrected anomaly
        :raises UnsupportedTimezoneError: a rail trip starts in a timezone
            without grace hours
        """
        logger = ProcessLogger("feed_fix_pipeline", trips=feed.trips.height, rules=len(self.rules))
        logger.log_start()

        try:
            state = self.detect(feed)
            findings = state.findings

            def fix_trips(trips: pl.DataFrame) -> pl.DataFrame:
                for rule in self.rules:
                    trips = rule.fix_trips(trips, feed, findings[rule.name], state)
                return trips

            def fix_agency(agency: pl.DataFrame) -> pl.DataFrame:
                for rule in self.rules:
                    agency = rule.fix_agency(agency, findings[rule.name])
                return agency

            def fix_stops(stops: pl.DataFrame) -> pl.DataFrame:
                for rule in self.rules:
                    stops = rule.fix_stops(stops, findings[rule.name])
                return stops

            def fix_routes(routes: pl.DataFrame) -> pl.DataFrame:
                for rule in self.rules:
                    routes = rule.fix_routes(routes, findings[rule.name])
                return routes

            trips = self._pass("fix_trips", feed.trips, fix_trips)
            kept_trip_ids = set(trips.get_column("trip_id").to_list())

            agency = self._pass("fix_agency", feed.agency, fix_agency)
            stops = self._pass("fix_stops", feed.stops, fix_stops)
            stop_times = self._pass(
                "fix_stop_times",
                feed.stop_times,
                lambda stop_times: stop_times.filter(pl.col("trip_id").is_in(list(kept_trip_ids))),
            )
            routes = self._pass("fix_routes", feed.routes, fix_routes)
            calendar = self._pass(
                "fix_calendar",
                feed.calendar,
                lambda calendar: pl.concat(
                    [calendar, calendar_frame(state.synthesized_calendars)],
                    how="diagonal",
                ),
            )

            corrected = CorrectedFeed(
                agency=agency,
                routes=routes,
                trips=trips,
                stop_times=stop_times,
                stops=stops,
                calendar=calendar,
                columns=feed.columns,
            )

            corrected.check_references()
            for rule in self.rules:
                rule.verify(corrected, findings[rule.name])
        except Exception as exception:
            logger.log_failure(exception)
            raise

        logger.add_metadata(
            kept_trips=len(kept_trip_ids),
            synthesized_calendars=len(state.synthesized_calendars),
            diagnostics=len(state.diagnostics),
        )
        logger.log_complete()

        return FixResult(feed=corrected, diagnostics=state.diagnostics, kept_trip_ids=kept_trip_ids)
