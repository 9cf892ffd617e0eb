"""User agent parsing.

Turns a raw client identification string into browser, OS, device and
engine fields. Parsing is pure and deterministic: the same string always
yields the same result, and no I/O is performed.

Native app clients identify themselves with a structured string of the
form ``AppName/1.4.2 (iOS 17.2;3F2504E0-4F89-41D3-9A0C-0305E82C3301)``.
Those are recognized first; everything else goes through conventional
browser signature matching.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

UNKNOWN = "Unknown"

# AppName/Version (Platform Version;Token)
NATIVE_APP_PATTERN = re.compile(
    r"^(?P<app>[A-Za-z0-9_.-]+)/(?P<version>\d+(?:\.\d+)*)\s*"
    r"\((?P<platform>[^;()]+);\s*(?P<token>[^;()]+)\)$"
)

_BROWSER_SIGNATURES = re.compile(
    r"Mozilla/\d+\.\d+|Chrome/\d+|Safari/\d+|Firefox/\d+|Edge?/\d+|Opera/\d+|MSIE \d+|Trident/\d+"
)

# Android model prefixes that reveal the vendor
_ANDROID_VENDORS = (
    ("SM-", "Samsung"),
    ("GT-", "Samsung"),
    ("Pixel", "Google"),
    ("Nexus", "Google"),
    ("Redmi", "Xiaomi"),
    ("Mi ", "Xiaomi"),
    ("ONEPLUS", "OnePlus"),
    ("HUAWEI", "Huawei"),
    ("moto", "Motorola"),
)

# "Android 13; SM-G998B Build/TP1A.220624.014)" -> "SM-G998B"
_ANDROID_MODEL_PATTERN = re.compile(
    r"Android [\d.]+;\s*(?:[a-z]{2}[-_][a-zA-Z]{2};\s*)?([^;)]+?)(?:\s+Build/[^;)]*)?[;)]"
)

# Chrome's reduced user agent reports this placeholder instead of a model
_REDUCED_ANDROID_MODEL = "K"


class DeviceType(str, Enum):
    """Coarse device category derived from the user agent."""

    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class BrowserInfo:
    """Browser (or native app) name and version."""

    name: str = UNKNOWN
    version: str = ""
    major: str = ""


@dataclass(frozen=True, slots=True)
class OSInfo:
    """Operating system family and version."""

    name: str = UNKNOWN
    version: str = ""

    @property
    def family(self) -> str:
        """OS family used for cross-checks; iPadOS belongs to the iOS family."""
        return "iOS" if self.name == "iPadOS" else self.name


@dataclass(frozen=True, slots=True)
class DeviceInfo:
    """Device category plus vendor and model when the user agent reveals them."""

    type: DeviceType = DeviceType.UNKNOWN
    vendor: str | None = None
    model: str | None = None

    @property
    def vendor_model(self) -> str | None:
        """Vendor and model joined, or None if neither is known."""
        parts = [p for p in (self.vendor, self.model) if p]
        return " ".join(parts) or None


@dataclass(frozen=True, slots=True)
class EngineInfo:
    """Rendering engine name and version."""

    name: str = UNKNOWN
    version: str = ""


@dataclass(frozen=True, slots=True)
class NativeAppInfo:
    """Fields extracted from a structured native app user agent."""

    name: str
    version: str
    platform: str
    token: str


@dataclass(frozen=True, slots=True)
class ParsedUserAgent:
    """Result of parsing one user agent string."""

    raw: str
    browser: BrowserInfo
    os: OSInfo
    device: DeviceInfo
    engine: EngineInfo
    app: NativeAppInfo | None = None

    @property
    def is_native_app(self) -> bool:
        return self.app is not None

    @property
    def looks_like_browser(self) -> bool:
        """True when the string carries a conventional browser signature."""
        return bool(_BROWSER_SIGNATURES.search(self.raw))


def _version(match: re.Match[str] | None, parts: int = 3) -> tuple[str, str]:
    """Build a dotted version (padding missing groups with 0) and its major."""
    if match is None:
        return "", ""
    groups = [g or "0" for g in match.groups()[:parts]]
    return ".".join(groups), groups[0]


class UserAgentParser:
    """Parser for raw user agent strings.

    Example:
        parser = UserAgentParser()
        parsed = parser.parse(request.headers.get("user-agent", ""))
        if parsed.device.type is DeviceType.MOBILE:
            ...
    """

    def parse(self, user_agent: str | None) -> ParsedUserAgent:
        """Parse a user agent string.

        Args:
            user_agent: Raw header value; None or empty parses to all-unknown.

        Returns:
            ParsedUserAgent with browser, OS, device and engine fields.
        """
        raw = (user_agent or "").strip()
        app = self._parse_native_app(raw)
        ua = raw.lower()

        browser = self._browser(ua, app)
        os_info = self._os(ua, app)
        device = self._device(ua, raw, os_info, app)
        engine = self._engine(ua)

        return ParsedUserAgent(
            raw=raw,
            browser=browser,
            os=os_info,
            device=device,
            engine=engine,
            app=app,
        )

    def _parse_native_app(self, raw: str) -> NativeAppInfo | None:
        match = NATIVE_APP_PATTERN.match(raw)
        if match is None or _BROWSER_SIGNATURES.search(raw):
            return None
        return NativeAppInfo(
            name=match.group("app"),
            version=match.group("version"),
            platform=match.group("platform").strip(),
            token=match.group("token").strip(),
        )

    def _browser(self, ua: str, app: NativeAppInfo | None) -> BrowserInfo:
        if app is not None:
            return BrowserInfo(
                name=app.name,
                version=app.version,
                major=app.version.split(".")[0],
            )

        if "edg/" in ua or "edge/" in ua:
            version, major = _version(re.search(r"edge?/(\d+)\.(\d+)\.?(\d+)?", ua))
            return BrowserInfo("Edge", version, major)

        if "opr/" in ua or "opera" in ua:
            version, major = _version(re.search(r"(?:opera|opr)/(\d+)\.(\d+)\.?(\d+)?", ua))
            return BrowserInfo("Opera", version, major)

        if "chrome/" in ua or "crios/" in ua:
            version, major = _version(re.search(r"(?:chrome|crios)/(\d+)\.(\d+)\.(\d+)", ua))
            return BrowserInfo("Chrome", version, major)

        if "firefox/" in ua or "fxios/" in ua:
            version, major = _version(re.search(r"(?:firefox|fxios)/(\d+)\.(\d+)\.?(\d+)?", ua))
            return BrowserInfo("Firefox", version, major)

        if "safari/" in ua:
            version, major = _version(re.search(r"version/(\d+)\.(\d+)\.?(\d+)?", ua))
            return BrowserInfo("Safari", version, major)

        if "msie " in ua or "trident/" in ua:
            match = re.search(r"msie (\d+)\.(\d+)", ua) or re.search(r"rv:(\d+)\.(\d+)", ua)
            version, major = _version(match, parts=2)
            return BrowserInfo("Internet Explorer", version, major)

        return BrowserInfo()

    def _os(self, ua: str, app: NativeAppInfo | None) -> OSInfo:
        if app is not None:
            platform = app.platform.lower()
            match = re.match(r"(ipados|ios|android)\s+(\d+)[_.]?(\d+)?[_.]?(\d+)?", platform)
            if match:
                name = {"ios": "iOS", "ipados": "iPadOS", "android": "Android"}[match.group(1)]
                groups = [g or "0" for g in match.groups()[1:]]
                return OSInfo(name, ".".join(groups))

        if "windows nt" in ua:
            match = re.search(r"windows nt (\d+)\.(\d+)", ua)
            version, _ = _version(match, parts=2)
            return OSInfo("Windows", version)

        # iPadOS Safari reports itself as "Macintosh" only when requesting desktop sites
        if "ipad" in ua:
            match = re.search(r"os (\d+)[_.](\d+)[_.]?(\d+)?", ua)
            version, _ = _version(match)
            return OSInfo("iPadOS", version)

        if "iphone" in ua or "ipod" in ua:
            match = re.search(r"os (\d+)[_.](\d+)[_.]?(\d+)?", ua)
            version, _ = _version(match)
            return OSInfo("iOS", version)

        if "mac os x" in ua or "macos" in ua:
            match = re.search(r"mac os x (\d+)[_.](\d+)[_.]?(\d+)?", ua)
            version, _ = _version(match)
            return OSInfo("macOS", version)

        if "android" in ua:
            match = re.search(r"android (\d+)\.?(\d+)?\.?(\d+)?", ua)
            version, _ = _version(match)
            return OSInfo("Android", version)

        if "linux" in ua or "x11" in ua:
            return OSInfo("Linux", "")

        return OSInfo()

    def _device(
        self,
        ua: str,
        raw: str,
        os_info: OSInfo,
        app: NativeAppInfo | None,
    ) -> DeviceInfo:
        vendor, model = self._vendor_model(raw, os_info)

        if "ipad" in ua or ("android" in ua and "tablet" in ua) or os_info.name == "iPadOS":
            return DeviceInfo(DeviceType.TABLET, vendor, model)

        if (
            app is not None
            or "mobile" in ua
            or "iphone" in ua
            or os_info.name in {"iOS", "Android"}
        ):
            return DeviceInfo(DeviceType.MOBILE, vendor, model)

        if os_info.name in {"Windows", "macOS", "Linux"}:
            return DeviceInfo(DeviceType.DESKTOP, vendor, model)

        return DeviceInfo(DeviceType.UNKNOWN, vendor, model)

    def _vendor_model(self, raw: str, os_info: OSInfo) -> tuple[str | None, str | None]:
        for apple_model in ("iPhone", "iPad", "iPod"):
            if apple_model in raw:
                return "Apple", apple_model

        if os_info.name == "Android":
            match = _ANDROID_MODEL_PATTERN.search(raw)
            if match:
                model = match.group(1).strip()
                if model and model != _REDUCED_ANDROID_MODEL:
                    vendor = next(
                        (v for prefix, v in _ANDROID_VENDORS if model.startswith(prefix)),
                        None,
                    )
                    return vendor, model

        return None, None

    def _engine(self, ua: str) -> EngineInfo:
        # Blink-based browsers still advertise AppleWebKit
        if "webkit/" in ua:
            match = re.search(r"webkit/(\d+)\.(\d+)", ua)
            version, _ = _version(match, parts=2)
            return EngineInfo("WebKit", version)

        if "gecko/" in ua:
            match = re.search(r"gecko/(\d+)", ua)
            return EngineInfo("Gecko", match.group(1) if match else "")

        if "trident/" in ua:
            match = re.search(r"trident/(\d+)\.(\d+)", ua)
            version, _ = _version(match, parts=2)
            return EngineInfo("Trident", version)

        return EngineInfo()
