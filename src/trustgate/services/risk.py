"""Behavioral risk analysis for authentication requests.

The composite score weighs five sub-scores, each in [0, 1]:

    0.25 * timing + 0.25 * user_agent + 0.20 * (1 - header_consistency)
    + 0.15 * geographic + 0.15 * network

Geographic and network sub-scores come from pluggable lookups. The
default lookup returns a fixed low score until a real IP reputation or
geolocation provider is wired in.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from trustgate.core.errors import DeviceRejectedError
from trustgate.services.consistency import UUID_SEARCH_PATTERN, is_degenerate_identifier

if TYPE_CHECKING:
    from trustgate.services.fingerprint import DeviceFingerprint

logger = logging.getLogger(__name__)

TIMING_WEIGHT = 0.25
USER_AGENT_WEIGHT = 0.25
CONSISTENCY_WEIGHT = 0.20
GEOGRAPHIC_WEIGHT = 0.15
NETWORK_WEIGHT = 0.15

LOW_THRESHOLD = 0.30
MEDIUM_THRESHOLD = 0.60
HIGH_THRESHOLD = 0.80
REJECT_SCORE = 0.9

# Score given to scripted clients that present no device signals at all
AUTOMATION_CLIENT_FLOOR = 0.95

# Used when a reputation lookup fails
UNKNOWN_REPUTATION_SCORE = 0.5

MIN_USER_AGENT_LENGTH = 10
MAX_USER_AGENT_LENGTH = 500
MAX_EMBEDDED_UUIDS = 2

AUTOMATION_KEYWORDS = (
    "bot",
    "crawler",
    "spider",
    "scraper",
    "automation",
    "headless",
    "phantom",
    "selenium",
    "puppeteer",
    "playwright",
    "webdriver",
    "cypress",
    "python",
    "curl",
    "wget",
    "httpie",
    "postman",
    "java/",
    "go-http-client",
    "node-fetch",
    "axios",
    "libwww",
    "scrapy",
)

# Keywords only count at the start of a word: "CUBOT" is a phone, not a bot
AUTOMATION_KEYWORD_PATTERN = re.compile(
    r"(?<![a-z0-9])(?:" + "|".join(re.escape(keyword) for keyword in AUTOMATION_KEYWORDS) + ")",
    re.IGNORECASE,
)

AUTOMATION_PATTERN = re.compile(
    r"\b(?:[a-z]*bot|crawl(?:er)?|spider|scrap(?:er|y)|headless\w*|phantomjs|selenium"
    r"|puppeteer|playwright|webdriver|curl|wget|python-\w+|go-http-client|java/[\d.]+"
    r"|libwww-perl|node-fetch|axios)\b",
    re.IGNORECASE,
)


class RiskLevel(str, Enum):
    """Risk category derived from the composite score."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ReputationLookup(Protocol):
    """Scores an IP address between 0 (benign) and 1 (hostile)."""

    async def score(self, ip_address: str | None) -> float: ...


class StaticReputationLookup:
    """Lookup returning the same score for every address."""

    def __init__(self, value: float = 0.1) -> None:
        self._value = value

    async def score(self, ip_address: str | None) -> float:  # noqa: ARG002
        return self._value


@dataclass(frozen=True, slots=True)
class RiskSubScores:
    """Per-axis sub-scores, each in [0, 1]."""

    timing: float
    user_agent: float
    header_consistency: float
    geographic: float
    network: float


@dataclass(frozen=True, slots=True)
class RiskAnalysis:
    """Risk verdict for one request; transient, snapshotted into device metadata."""

    score: float
    level: RiskLevel
    patterns: tuple[str, ...]
    sub_scores: RiskSubScores

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "level": self.level.value,
            "patterns": list(self.patterns),
            "sub_scores": asdict(self.sub_scores),
        }


@dataclass(frozen=True, slots=True)
class RiskVerdict:
    """What the login flow must do with a request of a given risk."""

    allowed: bool
    force_untrusted: bool
    audit: bool


def risk_level(score: float) -> RiskLevel:
    """Map a composite score to its level."""
    if score < LOW_THRESHOLD:
        return RiskLevel.LOW
    if score < MEDIUM_THRESHOLD:
        return RiskLevel.MEDIUM
    if score < HIGH_THRESHOLD:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


def timing_score(previous_seen_at: datetime | None, now: datetime) -> float:
    """Score the gap since this device was last seen.

    Args:
        previous_seen_at: Last sighting of the same fingerprint, if any.
        now: Current time.

    Returns:
        0.9 under 1s, 0.6 under 5s, 0.3 under 30s, otherwise 0.1.
    """
    if previous_seen_at is None:
        return 0.1
    gap = max(0.0, (now - previous_seen_at).total_seconds())
    if gap < 1:
        return 0.9
    if gap < 5:
        return 0.6
    if gap < 30:
        return 0.3
    return 0.1


def user_agent_score(user_agent: str) -> tuple[float, list[str]]:
    """Score a user agent string for automation markers.

    Returns:
        The sub-score clipped to 1.0 and the pattern tags that contributed.
    """
    score = 0.0
    patterns: list[str] = []

    if not user_agent:
        return 0.3, ["missing_user_agent"]

    if len(user_agent) < MIN_USER_AGENT_LENGTH:
        score += 0.2
        patterns.append("short_user_agent")
    if len(user_agent) > MAX_USER_AGENT_LENGTH:
        score += 0.1
        patterns.append("long_user_agent")

    if AUTOMATION_KEYWORD_PATTERN.search(user_agent):
        score += 0.4
        patterns.append("automation_keyword")
    if AUTOMATION_PATTERN.search(user_agent):
        score += 0.5
        patterns.append("automation_pattern")

    uuids = UUID_SEARCH_PATTERN.findall(user_agent)
    if len(uuids) > MAX_EMBEDDED_UUIDS:
        score += 0.3
        patterns.append("multiple_uuids")
    if any(is_degenerate_identifier(value) for value in uuids):
        score += 0.2
        patterns.append("placeholder_uuid")

    return min(score, 1.0), patterns


class BehavioralRiskAnalyzer:
    """Analyzer combining request signals into a composite risk score.

    Example:
        analyzer = BehavioralRiskAnalyzer()
        analysis = await analyzer.analyze(
            fingerprint,
            ip_address="203.0.113.7",
            previous_seen_at=device.last_seen_at if device else None,
        )
    """

    def __init__(
        self,
        *,
        geographic: ReputationLookup | None = None,
        network: ReputationLookup | None = None,
    ) -> None:
        self._geographic = geographic or StaticReputationLookup(0.1)
        self._network = network or StaticReputationLookup(0.1)

    async def analyze(
        self,
        fingerprint: DeviceFingerprint,
        *,
        ip_address: str | None = None,
        previous_seen_at: datetime | None = None,
        now: datetime | None = None,
    ) -> RiskAnalysis:
        """Compute the composite risk for one request.

        Args:
            fingerprint: Fingerprint of the request, including its consistency report.
            ip_address: Client address passed to the reputation lookups.
            previous_seen_at: Last sighting of the same fingerprint, if known.
            now: Current time (defaults to now in UTC).

        Returns:
            RiskAnalysis with score, level, pattern tags and sub-scores.
        """
        now = now or datetime.now(UTC)
        components = fingerprint.components

        timing = timing_score(previous_seen_at, now)
        ua_score, patterns = user_agent_score(components.user_agent)
        consistency = fingerprint.consistency.score
        geographic, network = await asyncio.gather(
            self._lookup(self._geographic, ip_address, "geographic"),
            self._lookup(self._network, ip_address, "network"),
        )

        if timing >= 0.6:
            patterns.append("rapid_requests")
        if not fingerprint.consistency.is_consistent:
            patterns.append("header_inconsistency")

        score = (
            TIMING_WEIGHT * timing
            + USER_AGENT_WEIGHT * ua_score
            + CONSISTENCY_WEIGHT * (1.0 - consistency)
            + GEOGRAPHIC_WEIGHT * geographic
            + NETWORK_WEIGHT * network
        )

        if (
            "automation_keyword" in patterns
            and "automation_pattern" in patterns
            and not components.has_auxiliary_headers
        ):
            score = max(score, AUTOMATION_CLIENT_FLOOR)
            patterns.append("automation_client")

        score = round(min(max(score, 0.0), 1.0), 4)
        analysis = RiskAnalysis(
            score=score,
            level=risk_level(score),
            patterns=tuple(patterns),
            sub_scores=RiskSubScores(
                timing=timing,
                user_agent=ua_score,
                header_consistency=consistency,
                geographic=geographic,
                network=network,
            ),
        )

        logger.debug(
            "Risk analyzed: score=%.4f, level=%s, patterns=%s",
            analysis.score,
            analysis.level.value,
            ",".join(analysis.patterns) or "-",
        )
        return analysis

    async def _lookup(self, lookup: ReputationLookup, ip_address: str | None, axis: str) -> float:
        try:
            value = await lookup.score(ip_address)
        except Exception:
            logger.warning(
                "Reputation lookup failed, using neutral score: axis=%s, ip=%s",
                axis,
                ip_address,
                exc_info=True,
            )
            return UNKNOWN_REPUTATION_SCORE
        return min(max(float(value), 0.0), 1.0)


class RiskGate:
    """Turns a risk analysis into an admission verdict."""

    def evaluate(self, analysis: RiskAnalysis) -> RiskVerdict:
        """Decide how to proceed.

        critical (or a score above 0.9) rejects; high proceeds with the device
        forced untrusted; medium proceeds; high and medium are audited.
        """
        if analysis.level is RiskLevel.CRITICAL or analysis.score > REJECT_SCORE:
            return RiskVerdict(allowed=False, force_untrusted=True, audit=True)
        if analysis.level is RiskLevel.HIGH:
            return RiskVerdict(allowed=True, force_untrusted=True, audit=True)
        if analysis.level is RiskLevel.MEDIUM:
            return RiskVerdict(allowed=True, force_untrusted=False, audit=True)
        return RiskVerdict(allowed=True, force_untrusted=False, audit=False)

    def enforce(self, analysis: RiskAnalysis) -> RiskVerdict:
        """Like evaluate(), but raise DeviceRejectedError for rejected requests."""
        verdict = self.evaluate(analysis)
        if not verdict.allowed:
            logger.warning(
                "Request rejected by risk gate: score=%.4f, level=%s",
                analysis.score,
                analysis.level.value,
            )
            raise DeviceRejectedError(retryable=False)
        return verdict
