"""
Feed correction rules

Each anomaly and its correction form one named, versioned FeedRule. The
orchestrator runs every rule's detector first, then offers each table to every
rule's hook for that table, in rule order. Adding or retiring a rule never
changes the orchestrator's loop.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Set

import polars as pl

from amtrak_fix_py.fixes.config import FixConfig
from amtrak_fix_py.fixes.corrections import (
    detach_shapes,
    exclude_agencies,
    exclude_routes,
    exclude_trips,
    override_stop_coordinates,
    reassign_calendars,
    rebrand_routes,
)
from amtrak_fix_py.fixes.detectors import (
    MidnightFindings,
    ShapeFindings,
    SupersededFindings,
    detect_broken_shapes,
    detect_midnight_crossings,
    detect_phantom_trips,
    detect_superseded_entities,
    excluded_route_ids,
    rebrand_route_ids,
)
from amtrak_fix_py.fixes.diagnostics import Diagnostic, DiagnosticKind, diagnostics_for
from amtrak_fix_py.gtfs.tables import CorrectedFeed, FeedTables, Row
from amtrak_fix_py.runtime_utils.fix_exception import ReferentialError


@dataclass
class CorrectionState:
    """
    state accumulated over a single pipeline run

    findings: rule name -> result of the rule's detect()
    synthesized_calendars: calendar rows to append to the calendar table
    diagnostics: non fatal findings reported while correcting
    """

    findings: Dict[str, Any] = field(default_factory=dict)
    synthesized_calendars: List[Row] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)


class FeedRule(ABC):
    """
    Base class for an anomaly detector paired with its corrections

    table hooks default to returning their frame unchanged
    """

    name: str = ""
    version: str = "1.0"

    def __init__(self, config: FixConfig) -> None:
        self.config = config

    def __str__(self) -> str:
        return f"{self.name}@{self.version}"

    @abstractmethod
    def detect(self, feed: FeedTables) -> Any:
        """flag records of the feed. must not modify the feed."""

    def diagnose(self, findings: Any) -> List[Diagnostic]:
        """diagnostics for the records flagged by detect()"""
        return []

    # pylint: disable=W0613
    # unused arguments in default hooks
    def fix_trips(self, trips: pl.DataFrame, feed: FeedTables, findings: Any, state: CorrectionState) -> pl.DataFrame:
        """correct or omit trips"""
        return trips

    def fix_agency(self, agency: pl.DataFrame, findings: Any) -> pl.DataFrame:
        """correct or omit agencies"""
        return agency

    def fix_stops(self, stops: pl.DataFrame, findings: Any) -> pl.DataFrame:
        """correct stops. stops are never omitted."""
        return stops

    def fix_routes(self, routes: pl.DataFrame, findings: Any) -> pl.DataFrame:
        """correct or omit routes"""
        return routes

    def verify(self, feed: CorrectedFeed, findings: Any) -> None:
        """check the corrected feed no longer contains the anomaly"""

    # pylint: enable=W0613


class ShapeDetachmentRule(FeedRule):
    """Clear shape references to broken shapes and shapes of denylisted routes"""

    name = "shape_detachment"

    def detect(self, feed: FeedTables) -> ShapeFindings:
        return detect_broken_shapes(feed, self.config)

    def diagnose(self, findings: ShapeFindings) -> List[Diagnostic]:
        return diagnostics_for(
            DiagnosticKind.BROKEN_SHAPE,
            self.name,
            findings.broken_shape_ids,
            f"consecutive points more than {self.config.shape_jump_threshold} degrees apart",
        ) + diagnostics_for(
            DiagnosticKind.DENYLISTED_SHAPE,
            self.name,
            findings.denylisted_shape_ids - findings.broken_shape_ids,
            "only used by routes with known bad shape data",
        )

    def fix_trips(
        self, trips: pl.DataFrame, feed: FeedTables, findings: ShapeFindings, state: CorrectionState
    ) -> pl.DataFrame:
        return detach_shapes(
            trips,
            blanket_route_ids=findings.blanket_route_ids,
            shape_ids=findings.broken_shape_ids | findings.denylisted_shape_ids,
        )

    def verify(self, feed: CorrectedFeed, findings: ShapeFindings) -> None:
        flagged_shape_ids = findings.broken_shape_ids | findings.denylisted_shape_ids
        still_attached = feed.trips.filter(
            pl.col("shape_id").is_not_null(),
            pl.col("shape_id").is_in(list(flagged_shape_ids))
            | pl.col("route_id").is_in(list(findings.blanket_route_ids)),
        )
        if still_attached.height > 0:
            raise ReferentialError("trips.txt", "shape_id", still_attached.get_column("trip_id"))


class MidnightCalendarRule(FeedRule):
    """Move late night rail departures onto calendars with the correct days"""

    name = "midnight_calendar"

    def detect(self, feed: FeedTables) -> MidnightFindings:
        return detect_midnight_crossings(feed, self.config)

    def diagnose(self, findings: MidnightFindings) -> List[Diagnostic]:
        return [
            Diagnostic(
                kind=DiagnosticKind.MIDNIGHT_CROSSING_EXEMPT,
                rule=self.name,
                entity_id=trip_id,
                message=f"potentially broken, route exempt from correction: {findings.descriptions[trip_id]}",
            )
            for trip_id in sorted(findings.exempt_trip_ids)
        ] + diagnostics_for(
            DiagnosticKind.MIDNIGHT_EXEMPT_SERVICE,
            self.name,
            findings.exempt_service_ids,
            "calendar of a route exempt from correction, not modified",
        )

    def fix_trips(
        self, trips: pl.DataFrame, feed: FeedTables, findings: MidnightFindings, state: CorrectionState
    ) -> pl.DataFrame:
        trips, new_calendars, unfixed = reassign_calendars(
            trips,
            trip_ids=findings.flagged_trip_ids,
            calendar_index=feed.calendar_index,
            config=self.config,
        )
        state.synthesized_calendars.extend(new_calendars)

        unfixed_ids = set(unfixed)
        for trip_id in sorted(findings.flagged_trip_ids):
            if trip_id in unfixed_ids:
                kind = DiagnosticKind.MIDNIGHT_CROSSING_UNFIXED
                message = "potentially broken, no calendar pattern for train number"
            else:
                kind = DiagnosticKind.MIDNIGHT_CROSSING_FIXED
                message = "moved to synthesized calendar"
            state.diagnostics.append(
                Diagnostic(
                    kind=kind,
                    rule=self.name,
                    entity_id=trip_id,
                    message=f"{message}: {findings.descriptions[trip_id]}",
                )
            )

        return trips


class SupersededEntityRule(FeedRule):
    """Drop agencies and routes published authoritatively in other feeds"""

    name = "superseded_entities"

    def detect(self, feed: FeedTables) -> SupersededFindings:
        return detect_superseded_entities(feed, self.config)

    def diagnose(self, findings: SupersededFindings) -> List[Diagnostic]:
        diagnostics: List[Diagnostic] = []
        for exclusion in self.config.excluded_agencies:
            if exclusion.name in findings.excluded_agency_names:
                diagnostics.append(
                    Diagnostic(
                        kind=DiagnosticKind.EXCLUDED_AGENCY,
                        rule=self.name,
                        entity_id=exclusion.name,
                        message=exclusion.reason,
                    )
                )
        return diagnostics + diagnostics_for(
            DiagnosticKind.EXCLUDED_ROUTE,
            self.name,
            findings.excluded_route_ids,
            "route, trips and stop times omitted",
        )

    def fix_trips(
        self, trips: pl.DataFrame, feed: FeedTables, findings: SupersededFindings, state: CorrectionState
    ) -> pl.DataFrame:
        return exclude_trips(trips, route_ids=findings.excluded_route_ids)

    def fix_agency(self, agency: pl.DataFrame, findings: SupersededFindings) -> pl.DataFrame:
        return exclude_agencies(agency, findings.excluded_agency_names)

    def fix_routes(self, routes: pl.DataFrame, findings: SupersededFindings) -> pl.DataFrame:
        return exclude_routes(routes, findings.excluded_route_ids)


class RouteRebrandRule(FeedRule):
    """Rename every route of a renamed agency"""

    name = "route_rebrand"

    def detect(self, feed: FeedTables) -> Set[str]:
        return rebrand_route_ids(feed, self.config) - excluded_route_ids(feed, self.config)

    def diagnose(self, findings: Set[str]) -> List[Diagnostic]:
        if self.config.rebrand is None:
            return []
        return diagnostics_for(
            DiagnosticKind.REBRANDED_ROUTE,
            self.name,
            findings,
            f"renamed to {self.config.rebrand.long_name}",
        )

    def fix_routes(self, routes: pl.DataFrame, findings: Set[str]) -> pl.DataFrame:
        if self.config.rebrand is None:
            return routes
        return rebrand_routes(routes, findings, self.config.rebrand)


class PhantomTripRule(FeedRule):
    """Drop trips of the rebranded agency that do not operate"""

    name = "phantom_trips"

    def detect(self, feed: FeedTables) -> Set[str]:
        return detect_phantom_trips(feed, self.config)

    def diagnose(self, findings: Set[str]) -> List[Diagnostic]:
        return diagnostics_for(
            DiagnosticKind.PHANTOM_TRIP,
            self.name,
            findings,
            f"train number starts with {self.config.phantom_trip_prefix}, trip and stop times omitted",
        )

    def fix_trips(
        self, trips: pl.DataFrame, feed: FeedTables, findings: Set[str], state: CorrectionState
    ) -> pl.DataFrame:
        return exclude_trips(trips, trip_ids=findings)


class StopCoordinateRule(FeedRule):
    """Replace stale stop names and coordinates"""

    name = "stop_coordinates"

    def detect(self, feed: FeedTables) -> Set[str]:
        return {stop_id for stop_id in self.config.stop_overrides if stop_id in feed.stop_index}

    def diagnose(self, findings: Set[str]) -> List[Diagnostic]:
        return diagnostics_for(
            DiagnosticKind.STOP_OVERRIDDEN,
            self.name,
            findings,
            "name and coordinates replaced",
        )

    def fix_stops(self, stops: pl.DataFrame, findings: Set[str]) -> pl.DataFrame:
        overrides = {stop_id: self.config.stop_overrides[stop_id] for stop_id in findings}
        return override_stop_coordinates(stops, overrides)


def default_rules(config: FixConfig) -> List[FeedRule]:
    """
    the production rule list, in the order trip hooks are applied:
    shapes are detached, then calendars synthesized, then trips omitted
    """
    return [
        ShapeDetachmentRule(config),
        MidnightCalendarRule(config),
        SupersededEntityRule(config),
        RouteRebrandRule(config),
        PhantomTripRule(config),
        StopCoordinateRule(config),
    ]
