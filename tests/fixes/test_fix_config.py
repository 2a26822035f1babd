import dataclasses
import json
import os
from pathlib import Path

import pytest

from amtrak_fix_py.fixes.config import (
    MON_THU_SAT,
    SAT_ONLY,
    CalendarPattern,
    FixConfig,
    NameExclusion,
    config_from_dict,
    config_from_json,
)
from amtrak_fix_py.runtime_utils.fix_exception import ConfigurationError


def test_default_config() -> None:
    """It carries the production rule set."""
    config = FixConfig.default()

    assert config.shape_jump_threshold == 0.1
    assert config.reference_timezone == "America/New_York"
    assert config.grace_hours == {"America/Chicago": 1, "America/Denver": 2, "America/Los_Angeles": 3}
    assert config.midnight_exempt_route_names == ("Pacific Surfliner",)
    assert config.calendar_prefix == "catenary"
    assert config.calendar_patterns == {"2": MON_THU_SAT, "343": SAT_ONLY, "422": MON_THU_SAT}
    assert config.excluded_agency_names == ("VIA Rail Canada",)
    assert config.rebrand is not None
    assert config.rebrand.agency_name == "San Joaquins"
    assert config.phantom_trip_prefix == "3"
    assert set(config.stop_overrides) == {"SAC", "OKJ"}


def test_config_frozen() -> None:
    """It can not be changed after creation."""
    config = FixConfig.default()

    with pytest.raises(dataclasses.FrozenInstanceError):
        config.calendar_prefix = "other"  # type: ignore[misc]


def test_config_from_dict() -> None:
    """It replaces only the given fields, converting json values to their field types."""
    config = config_from_dict(
        {
            "shape_jump_threshold": 0.5,
            "excluded_routes": [{"name": "Downeaster", "reason": "test"}],
            "calendar_patterns": {
                "7": {
                    "monday": False,
                    "tuesday": True,
                    "wednesday": False,
                    "thursday": False,
                    "friday": False,
                    "saturday": False,
                    "sunday": False,
                }
            },
            "rebrand": None,
        }
    )

    assert config.shape_jump_threshold == 0.5
    assert config.excluded_routes == (NameExclusion(name="Downeaster", reason="test"),)
    assert config.calendar_patterns["7"] == CalendarPattern(
        monday=False,
        tuesday=True,
        wednesday=False,
        thursday=False,
        friday=False,
        saturday=False,
        sunday=False,
    )
    assert config.rebrand is None
    assert config.grace_hours == FixConfig.default().grace_hours


@pytest.mark.parametrize(
    ["overrides"],
    [
        ({"not_a_field": 1},),
        ({"calendar_patterns": {"7": {"monday": True}}},),
        ({"stop_overrides": {"SAC": {"stop_name": "Sacramento"}}},),
        ({"grace_hours": {"America/Phoenix": "two"}},),
    ],
    ids=[
        "unknown-field",
        "incomplete-calendar-pattern",
        "incomplete-stop-override",
        "non-integer-grace-hours",
    ],
)
def test_config_from_dict_invalid(overrides: dict) -> None:
    """It raises a ConfigurationError for fields or values that do not fit the configuration."""
    with pytest.raises(ConfigurationError):
        config_from_dict(overrides)


def test_config_from_json(tmp_path: Path) -> None:
    """It reads overrides from a json file."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps({"phantom_trip_prefix": None, "calendar_prefix": "fixed"}), encoding="utf8")

    config = config_from_json(os.fspath(config_file))

    assert config.phantom_trip_prefix is None
    assert config.calendar_prefix == "fixed"
    assert config.reference_timezone == "America/New_York"


@pytest.mark.parametrize(
    ["contents"],
    [
        (None,),
        ("{not json",),
        ("[1, 2, 3]",),
    ],
    ids=[
        "missing-file",
        "invalid-json",
        "not-an-object",
    ],
)
def test_config_from_json_invalid(tmp_path: Path, contents: str) -> None:
    """It raises a ConfigurationError when the file can not be used."""
    config_file = tmp_path / "config.json"
    if contents is not None:
        config_file.write_text(contents, encoding="utf8")

    with pytest.raises(ConfigurationError):
        config_from_json(os.fspath(config_file))
