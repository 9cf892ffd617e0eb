"""Device fingerprinting from request headers.

The primary fingerprint identifies a device across logins; the secondary
fingerprint is a cheaper digest kept for correlation only. Primary
fingerprints are chosen in priority order:

1. Hardware attributes, when at least two of device model header, user
   agent vendor/model, platform hint and system version are present.
2. The client's device id header, when UUID-shaped and accepted by the
   consistency validator.
3. The token embedded in a native app user agent, under the same rule.
4. A composite digest of the browser-level signals.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from trustgate.db.models.base import DeviceConfidence
from trustgate.services.consistency import ConsistencyReport, ConsistencyValidator, system_family
from trustgate.services.user_agent import DeviceType, ParsedUserAgent, UserAgentParser

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

FINGERPRINT_LENGTH = 32

# Header name -> FingerprintComponents field
HEADER_FIELDS = {
    "user-agent": "user_agent",
    "x-screen-resolution": "screen",
    "x-timezone": "timezone",
    "accept-language": "language",
    "sec-ch-ua-platform": "platform",
    "x-webgl-vendor": "webgl",
    "x-canvas-fingerprint": "canvas",
    "x-device-id": "device_id",
    "x-device-model": "device_model",
    "x-device-name": "device_name",
    "x-system-version": "system_version",
    "x-app-version": "app_version",
    "x-app-build": "app_build",
    "x-device-capabilities": "capabilities",
}

NATIVE_FIELDS = (
    "device_id",
    "device_model",
    "system_version",
    "app_version",
    "app_build",
    "capabilities",
)
BROWSER_ONLY_FIELDS = ("platform", "webgl", "canvas")

CONFIDENCE_WEIGHTS = {
    "user_agent": 2,
    "screen": 2,
    "timezone": 1,
    "language": 1,
    "platform": 1,
    "webgl": 2,
    "canvas": 2,
    "device_id": 5,
    "device_model": 3,
    "system_version": 2,
    "app_version": 2,
    "app_build": 1,
    "capabilities": 3,
}
HIGH_CONFIDENCE_SCORE = 12
MEDIUM_CONFIDENCE_SCORE = 8


class FingerprintSource(str, Enum):
    """Which priority produced the primary fingerprint."""

    DEVICE_ATTRIBUTES = "device_attributes"
    DEVICE_ID = "device_id"
    APP_TOKEN = "app_token"
    COMPOSITE = "composite"


def decode_device_name(value: str) -> str:
    """Decode a base64 device name, returning the input when it is not base64.

    Only strict base64 that decodes to printable UTF-8 is decoded, so plain
    names such as "Pixel" pass through untouched.
    """
    try:
        decoded = base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return value
    if not decoded or not decoded.isprintable():
        return value
    return decoded


def _digest(parts: list[str]) -> str:
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


@dataclass(frozen=True, slots=True)
class FingerprintComponents:
    """Normalized request signals used for fingerprinting.

    Empty header values are stored as None.
    """

    user_agent: str = ""
    screen: str | None = None
    timezone: str | None = None
    language: str | None = None
    platform: str | None = None
    webgl: str | None = None
    canvas: str | None = None
    device_id: str | None = None
    device_model: str | None = None
    device_name: str | None = None
    system_version: str | None = None
    app_version: str | None = None
    app_build: str | None = None
    capabilities: str | None = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> FingerprintComponents:
        """Build components from request headers (names are case-insensitive)."""
        lowered = {name.lower(): value for name, value in headers.items()}
        values: dict[str, str | None] = {}
        for header, field_name in HEADER_FIELDS.items():
            raw = (lowered.get(header) or "").strip()
            values[field_name] = raw or None

        if values["platform"]:
            # Client hints arrive quoted: "Windows"
            values["platform"] = values["platform"].strip('"') or None
        if values["device_name"]:
            values["device_name"] = decode_device_name(values["device_name"])

        user_agent = values.pop("user_agent") or ""
        return cls(user_agent=user_agent, **values)

    @property
    def primary_language(self) -> str:
        """First language tag of Accept-Language, without quality value."""
        if not self.language:
            return ""
        return self.language.split(",")[0].split(";")[0].strip()

    @property
    def has_native_headers(self) -> bool:
        return any(getattr(self, name) for name in NATIVE_FIELDS)

    @property
    def has_browser_only_headers(self) -> bool:
        return any(getattr(self, name) for name in BROWSER_ONLY_FIELDS)

    @property
    def has_auxiliary_headers(self) -> bool:
        """True when any signal besides the user agent is present."""
        return any(
            getattr(self, name)
            for name in HEADER_FIELDS.values()
            if name not in ("user_agent", "language")
        )

    def present_native_fields(self) -> list[str]:
        return [name for name in NATIVE_FIELDS if getattr(self, name)]

    def present_browser_fields(self) -> list[str]:
        return [name for name in BROWSER_ONLY_FIELDS if getattr(self, name)]

    def confidence_score(self) -> int:
        return sum(weight for name, weight in CONFIDENCE_WEIGHTS.items() if getattr(self, name))

    def to_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value}


@dataclass(frozen=True, slots=True)
class DeviceDescriptor:
    """Human-facing device attributes stored on the device record."""

    device_type: str
    device_name: str | None
    os_name: str
    os_version: str
    browser_name: str
    browser_version: str


@dataclass(frozen=True, slots=True)
class DeviceFingerprint:
    """Fingerprint of one request.

    Attributes:
        primary: Identity key of the device (32 hex chars or a client UUID).
        secondary: MD5 correlation digest; never used alone as identity.
        confidence: Reliability label derived from the weighted signal count.
        source: Which priority produced the primary fingerprint.
        components: Normalized request signals.
        parsed: Parsed user agent.
        consistency: Header consistency report.
    """

    primary: str
    secondary: str
    confidence: DeviceConfidence
    source: FingerprintSource
    components: FingerprintComponents
    parsed: ParsedUserAgent
    consistency: ConsistencyReport

    def describe(self) -> DeviceDescriptor:
        """Derive display attributes, preferring native app headers over the user agent."""
        parsed = self.parsed
        components = self.components
        is_app = parsed.is_native_app or (
            components.has_native_headers and not parsed.looks_like_browser
        )

        os_name, os_version = parsed.os.name, parsed.os.version
        if is_app and components.system_version:
            family = system_family(components.system_version)
            if family is not None:
                os_name = family
                os_version = components.system_version.split(" ", 1)[-1].strip()

        device_type = parsed.device.type.value
        browser_version = parsed.browser.version
        if is_app:
            if device_type in (DeviceType.UNKNOWN.value, DeviceType.DESKTOP.value):
                device_type = DeviceType.MOBILE.value
            browser_version = components.app_version or browser_version

        return DeviceDescriptor(
            device_type=device_type,
            device_name=components.device_name or components.device_model,
            os_name=os_name,
            os_version=os_version,
            browser_name=parsed.browser.name,
            browser_version=browser_version,
        )

    def snapshot(self) -> dict[str, Any]:
        """Serializable summary stored in the device metadata."""
        return {
            "source": self.source.value,
            "confidence": self.confidence.value,
            "confidence_score": self.components.confidence_score(),
            "components": self.components.to_dict(),
            "consistency": self.consistency.to_dict(),
            "parsed": {
                "browser": asdict(self.parsed.browser),
                "os": asdict(self.parsed.os),
                "device": {
                    "type": self.parsed.device.type.value,
                    "vendor": self.parsed.device.vendor,
                    "model": self.parsed.device.model,
                },
                "engine": asdict(self.parsed.engine),
            },
        }


class FingerprintGenerator:
    """Generator for device fingerprints.

    Example:
        generator = FingerprintGenerator()
        fingerprint = generator.generate(request.headers)
        device = await devices.find_by_fingerprint(fingerprint.primary)
    """

    def __init__(
        self,
        parser: UserAgentParser | None = None,
        validator: ConsistencyValidator | None = None,
    ) -> None:
        self._parser = parser or UserAgentParser()
        self._validator = validator or ConsistencyValidator()

    def generate(self, headers: Mapping[str, str]) -> DeviceFingerprint:
        """Fingerprint a request from its headers.

        Args:
            headers: Request headers; names are matched case-insensitively.

        Returns:
            DeviceFingerprint; identical headers always give identical output.
        """
        return self.generate_from_components(FingerprintComponents.from_headers(headers))

    def generate_from_components(self, components: FingerprintComponents) -> DeviceFingerprint:
        parsed = self._parser.parse(components.user_agent)
        report = self._validator.validate(components, parsed)
        primary, source = self._primary(components, parsed, report)
        secondary = self._secondary(components, parsed)
        confidence = self._confidence(components)

        logger.debug(
            "Fingerprint generated: source=%s, confidence=%s, prefix=%s",
            source.value,
            confidence.value,
            primary[:8],
        )

        return DeviceFingerprint(
            primary=primary,
            secondary=secondary,
            confidence=confidence,
            source=source,
            components=components,
            parsed=parsed,
            consistency=report,
        )

    def _primary(
        self,
        components: FingerprintComponents,
        parsed: ParsedUserAgent,
        report: ConsistencyReport,
    ) -> tuple[str, FingerprintSource]:
        hardware = [
            components.device_model or "",
            parsed.device.vendor_model or "",
            components.platform or "",
            components.system_version or "",
        ]
        if sum(1 for value in hardware if value) >= 2:
            return _digest(hardware), FingerprintSource.DEVICE_ATTRIBUTES

        if self._validator.accepts_identifier(components.device_id, report):
            return components.device_id.lower(), FingerprintSource.DEVICE_ID

        if parsed.app is not None and self._validator.accepts_identifier(parsed.app.token, report):
            return parsed.app.token.lower(), FingerprintSource.APP_TOKEN

        composite = [
            components.user_agent,
            components.screen or "",
            components.timezone or "",
            components.primary_language,
            components.platform or "",
            components.device_model or "",
            components.system_version or "",
            f"{parsed.os.name}{parsed.os.version}",
            f"{parsed.browser.name}{parsed.browser.major}",
        ]
        return _digest(composite), FingerprintSource.COMPOSITE

    def _secondary(self, components: FingerprintComponents, parsed: ParsedUserAgent) -> str:
        basic = "|".join(
            [
                components.user_agent,
                components.primary_language,
                parsed.os.name,
                parsed.browser.name,
            ]
        )
        return hashlib.md5(basic.encode("utf-8"), usedforsecurity=False).hexdigest()

    def _confidence(self, components: FingerprintComponents) -> DeviceConfidence:
        score = components.confidence_score()
        if score >= HIGH_CONFIDENCE_SCORE:
            return DeviceConfidence.HIGH
        if score >= MEDIUM_CONFIDENCE_SCORE:
            return DeviceConfidence.MEDIUM
        return DeviceConfidence.LOW
