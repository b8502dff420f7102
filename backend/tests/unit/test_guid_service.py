"""
Unit tests for GuidService and the GUID mixin.

Tests cover:
- Format validation
- Prefix checks
- Decoding back to UUIDs
- Round trip through persisted models
"""

import uuid

import pytest

from backend.src.models import Event, Location
from backend.src.services.guid import ENTITY_PREFIXES, GUID_PATTERN, GuidService


class TestGuidValidation:
    """Tests for validate_guid."""

    def test_prefixes(self):
        assert ENTITY_PREFIXES == {"evt": "Event", "loc": "Location"}

    def test_validate_valid_guids(self):
        assert GuidService.validate_guid("evt_" + "0" * 26)
        assert GuidService.validate_guid("loc_01HGW2BBG0000000000000000A")

    def test_validate_with_expected_prefix(self):
        guid = "loc_" + "1" * 26
        assert GuidService.validate_guid(guid, "loc")
        assert not GuidService.validate_guid(guid, "evt")

    @pytest.mark.parametrize("guid", [
        "",
        None,
        "evt_short",
        "usr_" + "0" * 26,
        "evt-" + "0" * 26,
        "evt_" + "U" * 26,
    ])
    def test_validate_invalid_format(self, guid):
        assert not GuidService.validate_guid(guid)

    def test_pattern_is_case_insensitive(self):
        assert GUID_PATTERN.match("EVT_" + "a" * 26)


class TestGuidParsing:
    """Tests for parse_guid."""

    def test_parse_zero(self):
        assert GuidService.parse_guid("evt_" + "0" * 26, "evt") == uuid.UUID(int=0)

    def test_parse_wrong_prefix_raises(self):
        with pytest.raises(ValueError):
            GuidService.parse_guid("loc_" + "0" * 26, "evt")

    def test_model_guid_round_trip(self, sample_location, sample_event):
        location = sample_location()
        event = sample_event()

        assert location.guid.startswith("loc_")
        assert event.guid.startswith("evt_")
        assert GuidService.parse_guid(location.guid, "loc") == location.uuid
        assert GuidService.parse_guid(event.guid.upper().replace("EVT_", "evt_"), "evt") == event.uuid
        assert Location.parse_guid(location.guid) == location.uuid

    def test_model_parse_guid_rejects_other_prefix(self, sample_location):
        location = sample_location()

        with pytest.raises(ValueError):
            Event.parse_guid(location.guid)

    def test_uuids_are_version_7(self, sample_location):
        assert sample_location().uuid.version == 7
