"""
GUID service for entity identification.

Provides utilities for validating and decoding the public identifiers used
in URLs and API responses.

GUID Format: {prefix}_{base32_uuid}
- prefix: 3-character entity type identifier (evt, loc)
- base32_uuid: 26-character Crockford Base32 encoded UUIDv7
"""

import re
import uuid

import base32_crockford

# Prefix mappings for persisted entity types
ENTITY_PREFIXES = {
    "evt": "Event",
    "loc": "Location",
}

GUID_PATTERN = re.compile(
    r"^(evt|loc)_[0-9A-HJKMNP-TV-Za-hjkmnp-tv-z]{26}$",
    re.IGNORECASE
)


class GuidService:
    """
    Static helpers for GUID validation and decoding.
    """

    @staticmethod
    def validate_guid(guid: str, expected_prefix: str = None) -> bool:
        """
        Validate a GUID format.

        Args:
            guid: GUID string to validate
            expected_prefix: Optional expected prefix for type checking

        Returns:
            True if valid, False otherwise
        """
        if not guid or not GUID_PATTERN.match(guid):
            return False

        if expected_prefix:
            return guid[:3].lower() == expected_prefix.lower()

        return True

    @staticmethod
    def parse_guid(guid: str, expected_prefix: str) -> uuid.UUID:
        """
        Parse a GUID string to UUID, validating the prefix.

        Raises:
            ValueError: If format invalid or prefix doesn't match
        """
        if not GuidService.validate_guid(guid, expected_prefix):
            raise ValueError(
                f"Invalid identifier format: {guid}. "
                f"Expected GUID format ({expected_prefix}_{{base32}})"
            )

        try:
            uuid_int = base32_crockford.decode(guid[4:].upper())
            return uuid.UUID(bytes=uuid_int.to_bytes(16, "big"))
        except (ValueError, OverflowError) as e:
            raise ValueError(f"Invalid GUID encoding: {e}")
