"""Cross-checks between auxiliary device headers and the parsed user agent.

Each check raises at most one flag; the consistency score drops by 0.2
per flag. A client-supplied device identifier is only trusted as a
fingerprint when no check relating to the client's declared fields fired
and the identifier is not a placeholder value.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from trustgate.services.fingerprint import FingerprintComponents
    from trustgate.services.user_agent import ParsedUserAgent

logger = logging.getLogger(__name__)

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
UUID_SEARCH_PATTERN = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}",
    re.IGNORECASE,
)

# iPhone14,2 / iPad13,1
APPLE_MODEL_PATTERN = re.compile(r"^(?:iPhone|iPad|iPod)\d+,\d+$")
# Samsung SM-G998B / Google Pixel 7
VENDOR_MODEL_PATTERN = re.compile(r"^[A-Za-z\s]+[A-Z0-9-]+$")

# "iOS 17.2" -> iOS, "Android 14" -> Android
_SYSTEM_FAMILY_PATTERN = re.compile(
    r"^\s*(ipados|ios|android|windows|macos|mac os x|linux)\b", re.IGNORECASE
)
_FAMILY_NAMES = {
    "ios": "iOS",
    "ipados": "iOS",
    "android": "Android",
    "windows": "Windows",
    "macos": "macOS",
    "mac os x": "macOS",
    "linux": "Linux",
}

SCORE_PENALTY = 0.2


class Inconsistency(str, Enum):
    """Independent consistency flags."""

    MISSING_DEVICE_HEADERS = "missing_device_headers"
    INVALID_DEVICE_MODEL = "invalid_device_model"
    SUSPICIOUS_HEADER_COMBINATION = "suspicious_header_combination"
    OS_MISMATCH = "os_mismatch"
    APP_VERSION_MISMATCH = "app_version_mismatch"


# Flags that make client-declared identifiers untrustworthy
IDENTIFIER_BLOCKING_FLAGS = frozenset(
    {
        Inconsistency.MISSING_DEVICE_HEADERS,
        Inconsistency.SUSPICIOUS_HEADER_COMBINATION,
        Inconsistency.OS_MISMATCH,
        Inconsistency.APP_VERSION_MISMATCH,
    }
)


@dataclass(frozen=True, slots=True)
class ConsistencyReport:
    """Flags raised for one request and the derived score.

    Attributes:
        inconsistencies: Flags in check order, each at most once.
        details: Values that caused each flag, for audit.
    """

    inconsistencies: tuple[Inconsistency, ...] = ()
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def score(self) -> float:
        """1.0 when fully consistent, minus 0.2 per flag, floored at 0."""
        return max(0.0, round(1.0 - SCORE_PENALTY * len(self.inconsistencies), 4))

    @property
    def is_consistent(self) -> bool:
        return not self.inconsistencies

    @property
    def blocks_declared_identifier(self) -> bool:
        return any(flag in IDENTIFIER_BLOCKING_FLAGS for flag in self.inconsistencies)

    def to_dict(self) -> dict[str, Any]:
        return {
            "inconsistencies": [flag.value for flag in self.inconsistencies],
            "score": self.score,
            "details": dict(self.details),
        }


def is_uuid(value: str | None) -> bool:
    """Check for canonical 8-4-4-4-12 hexadecimal UUID shape."""
    return bool(value) and UUID_PATTERN.match(value) is not None


def is_degenerate_identifier(value: str) -> bool:
    """Check whether every hyphen-separated block repeats a single character.

    Catches the nil UUID, all-F values and placeholders such as
    11111111-2222-3333-4444-555555555555.
    """
    blocks = [b for b in value.lower().split("-") if b]
    return bool(blocks) and all(len(set(block)) == 1 for block in blocks)


def is_valid_device_model(model: str) -> bool:
    """Check a device model against the Apple and vendor-model shapes."""
    return bool(APPLE_MODEL_PATTERN.match(model) or VENDOR_MODEL_PATTERN.match(model))


def system_family(system_version: str) -> str | None:
    """Extract the OS family from a declared system version, if it names one."""
    match = _SYSTEM_FAMILY_PATTERN.match(system_version)
    if match is None:
        return None
    return _FAMILY_NAMES[match.group(1).lower()]


class ConsistencyValidator:
    """Validator for device header consistency.

    Example:
        validator = ConsistencyValidator()
        report = validator.validate(components, parsed)
        if validator.accepts_identifier(components.device_id, report):
            ...
    """

    def validate(
        self,
        components: FingerprintComponents,
        parsed: ParsedUserAgent,
    ) -> ConsistencyReport:
        """Run every check and collect the flags that fire.

        Args:
            components: Normalized request signals.
            parsed: Parsed user agent of the same request.

        Returns:
            ConsistencyReport with the raised flags.
        """
        flags: list[Inconsistency] = []
        details: dict[str, Any] = {}

        if parsed.is_native_app and not components.has_native_headers:
            flags.append(Inconsistency.MISSING_DEVICE_HEADERS)

        if components.device_model and not is_valid_device_model(components.device_model):
            flags.append(Inconsistency.INVALID_DEVICE_MODEL)
            details["device_model"] = components.device_model

        if components.has_native_headers and components.has_browser_only_headers:
            flags.append(Inconsistency.SUSPICIOUS_HEADER_COMBINATION)
            details["native_headers"] = components.present_native_fields()
            details["browser_headers"] = components.present_browser_fields()

        if components.system_version and parsed.os.name != "Unknown":
            declared = system_family(components.system_version)
            if declared is not None and declared != parsed.os.family:
                flags.append(Inconsistency.OS_MISMATCH)
                details["declared_os"] = declared
                details["user_agent_os"] = parsed.os.name

        if components.app_version and parsed.browser.version:
            if components.app_version != parsed.browser.version:
                flags.append(Inconsistency.APP_VERSION_MISMATCH)
                details["declared_app_version"] = components.app_version
                details["user_agent_version"] = parsed.browser.version

        if flags:
            logger.debug(
                "Header inconsistencies detected: flags=%s",
                ",".join(flag.value for flag in flags),
            )

        return ConsistencyReport(inconsistencies=tuple(flags), details=details)

    def accepts_identifier(self, identifier: str | None, report: ConsistencyReport) -> bool:
        """Decide whether a client-declared identifier may serve as the fingerprint.

        Args:
            identifier: Device id header or the token embedded in a native app UA.
            report: Consistency report for the same request.

        Returns:
            True if the identifier is UUID-shaped, not a placeholder, and no
            flag about the client's declared fields fired.
        """
        if not identifier or not is_uuid(identifier):
            return False
        if is_degenerate_identifier(identifier):
            logger.info("Rejected placeholder device identifier: prefix=%s", identifier[:8])
            return False
        return not report.blocks_declared_identifier
