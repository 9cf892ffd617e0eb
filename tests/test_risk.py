"""Tests for behavioral risk analysis and the risk gate.

Tests cover:
- Timing and user agent sub-scores
- Composite score weighting and level thresholds
- The automation client floor
- Reputation lookup failures
- Gate verdicts per level
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from tests.factories import CHROME_DESKTOP_UA, CURL_UA, NOW, browser_headers
from tests.fakes import FailingReputationLookup, FixedReputationLookup
from trustgate.core.errors import DeviceRejectedError
from trustgate.services.fingerprint import FingerprintGenerator
from trustgate.services.risk import (
    AUTOMATION_CLIENT_FLOOR,
    BehavioralRiskAnalyzer,
    RiskAnalysis,
    RiskGate,
    RiskLevel,
    RiskSubScores,
    risk_level,
    timing_score,
    user_agent_score,
)


CUBOT_FIREFOX_UA = "Mozilla/5.0 (Android 11; Mobile; CUBOT X30; rv:109.0) Gecko/117.0 Firefox/117.0"


def _analysis(score: float) -> RiskAnalysis:
    return RiskAnalysis(
        score=score,
        level=risk_level(score),
        patterns=(),
        sub_scores=RiskSubScores(0.1, 0.0, 1.0, 0.1, 0.1),
    )


class TestSubScores:
    """Tests for the timing and user agent sub-scores."""

    @pytest.mark.parametrize(
        ("gap", "expected"),
        [
            (timedelta(milliseconds=500), 0.9),
            (timedelta(seconds=3), 0.6),
            (timedelta(seconds=10), 0.3),
            (timedelta(minutes=5), 0.1),
        ],
    )
    def test_timing_score(self, gap: timedelta, expected: float) -> None:
        assert timing_score(NOW - gap, NOW) == expected

    def test_timing_without_history(self) -> None:
        assert timing_score(None, NOW) == 0.1

    def test_browser_user_agent_scores_zero(self) -> None:
        assert user_agent_score(CHROME_DESKTOP_UA) == (0.0, [])

    def test_missing_user_agent(self) -> None:
        assert user_agent_score("") == (0.3, ["missing_user_agent"])

    def test_curl_hits_keyword_and_pattern(self) -> None:
        score, patterns = user_agent_score(CURL_UA)

        assert score == pytest.approx(0.9)
        assert patterns == ["automation_keyword", "automation_pattern"]

    def test_keyword_inside_a_word_is_ignored(self) -> None:
        _, patterns = user_agent_score(CUBOT_FIREFOX_UA)
        assert patterns == ["automation_pattern"]

    def test_short_user_agent(self) -> None:
        score, patterns = user_agent_score("Foo/1.0")

        assert score == pytest.approx(0.2)
        assert patterns == ["short_user_agent"]

    def test_embedded_placeholder_uuids(self) -> None:
        ua = (
            "App/1.0 (00000000-0000-0000-0000-000000000000 "
            "11111111-1111-1111-1111-111111111111 "
            "22222222-2222-2222-2222-222222222222)"
        )
        score, patterns = user_agent_score(ua)

        assert "multiple_uuids" in patterns
        assert "placeholder_uuid" in patterns
        assert score == pytest.approx(0.5)

    def test_score_is_capped(self) -> None:
        score, _ = user_agent_score("python-requests bot " + "x" * 600)
        assert score == 1.0


class TestLevels:
    """Tests for score-to-level thresholds."""

    @pytest.mark.parametrize(
        ("score", "level"),
        [
            (0.0, RiskLevel.LOW),
            (0.29, RiskLevel.LOW),
            (0.30, RiskLevel.MEDIUM),
            (0.59, RiskLevel.MEDIUM),
            (0.60, RiskLevel.HIGH),
            (0.79, RiskLevel.HIGH),
            (0.80, RiskLevel.CRITICAL),
            (1.0, RiskLevel.CRITICAL),
        ],
    )
    def test_thresholds(self, score: float, level: RiskLevel) -> None:
        assert risk_level(score) is level


class TestAnalyzer:
    """Tests for the composite analysis."""

    @pytest.mark.asyncio
    async def test_legitimate_browser_is_low(self) -> None:
        fingerprint = FingerprintGenerator().generate(browser_headers())
        analysis = await BehavioralRiskAnalyzer().analyze(fingerprint, now=NOW)

        # 0.25 * 0.1 timing + 0.15 * 0.1 + 0.15 * 0.1 reputation
        assert analysis.score == pytest.approx(0.055)
        assert analysis.level is RiskLevel.LOW
        assert analysis.patterns == ()

    @pytest.mark.asyncio
    async def test_curl_without_device_headers_hits_floor(self) -> None:
        fingerprint = FingerprintGenerator().generate({"User-Agent": CURL_UA})
        analysis = await BehavioralRiskAnalyzer().analyze(fingerprint, now=NOW)

        assert analysis.score == AUTOMATION_CLIENT_FLOOR
        assert analysis.score > 0.9
        assert analysis.level is RiskLevel.CRITICAL
        assert "automation_client" in analysis.patterns

    @pytest.mark.asyncio
    async def test_vendor_name_containing_bot_is_not_floored(self) -> None:
        fingerprint = FingerprintGenerator().generate({"User-Agent": CUBOT_FIREFOX_UA})

        analysis = await BehavioralRiskAnalyzer().analyze(fingerprint, now=NOW)

        assert "automation_client" not in analysis.patterns
        assert analysis.score < AUTOMATION_CLIENT_FLOOR
        assert RiskGate().evaluate(analysis).allowed is True

    @pytest.mark.asyncio
    async def test_automation_with_device_headers_is_weighted(self) -> None:
        """Auxiliary headers keep the plain weighted score."""
        fingerprint = FingerprintGenerator().generate(
            {"User-Agent": "python-requests/2.31.0", "X-Timezone": "UTC"}
        )
        analysis = await BehavioralRiskAnalyzer().analyze(fingerprint, now=NOW)

        assert analysis.score == pytest.approx(0.28)
        assert "automation_client" not in analysis.patterns

    @pytest.mark.asyncio
    async def test_rapid_requests_pattern(self) -> None:
        fingerprint = FingerprintGenerator().generate(browser_headers())
        analysis = await BehavioralRiskAnalyzer().analyze(
            fingerprint, previous_seen_at=NOW - timedelta(seconds=2), now=NOW
        )

        assert analysis.sub_scores.timing == 0.6
        assert "rapid_requests" in analysis.patterns

    @pytest.mark.asyncio
    async def test_reputation_lookups_receive_ip(self) -> None:
        geographic = FixedReputationLookup(1.0)
        network = FixedReputationLookup(1.0)
        analyzer = BehavioralRiskAnalyzer(geographic=geographic, network=network)
        fingerprint = FingerprintGenerator().generate(browser_headers())

        analysis = await analyzer.analyze(fingerprint, ip_address="198.51.100.4", now=NOW)

        assert geographic.queried == ["198.51.100.4"]
        assert network.queried == ["198.51.100.4"]
        assert analysis.score == pytest.approx(0.325)
        assert analysis.level is RiskLevel.MEDIUM

    @pytest.mark.asyncio
    async def test_failing_lookup_uses_neutral_score(self) -> None:
        analyzer = BehavioralRiskAnalyzer(geographic=FailingReputationLookup())
        fingerprint = FingerprintGenerator().generate(browser_headers())

        analysis = await analyzer.analyze(fingerprint, now=NOW)

        assert analysis.sub_scores.geographic == 0.5

    @pytest.mark.asyncio
    async def test_to_dict(self) -> None:
        fingerprint = FingerprintGenerator().generate(browser_headers())
        data = (await BehavioralRiskAnalyzer().analyze(fingerprint, now=NOW)).to_dict()

        assert data["level"] == "low"
        assert set(data["sub_scores"]) == {
            "timing",
            "user_agent",
            "header_consistency",
            "geographic",
            "network",
        }


class TestRiskGate:
    """Tests for gate verdicts."""

    def test_low_passes_silently(self) -> None:
        verdict = RiskGate().evaluate(_analysis(0.1))
        assert (verdict.allowed, verdict.force_untrusted, verdict.audit) == (True, False, False)

    def test_medium_is_audited(self) -> None:
        verdict = RiskGate().evaluate(_analysis(0.45))
        assert (verdict.allowed, verdict.force_untrusted, verdict.audit) == (True, False, True)

    def test_high_forces_untrusted(self) -> None:
        verdict = RiskGate().evaluate(_analysis(0.7))
        assert (verdict.allowed, verdict.force_untrusted, verdict.audit) == (True, True, True)

    @pytest.mark.parametrize(
        ("score", "force_untrusted"),
        [
            (0.51, False),
            (0.55, False),
            (0.59, False),
            (0.60, True),
            (0.65, True),
            (0.71, True),
            (0.79, True),
        ],
    )
    def test_level_decides_trust_between_thresholds(
        self, score: float, force_untrusted: bool
    ) -> None:
        """Medium stays eligible for trust up to 0.6; high is forced untrusted from 0.6."""
        verdict = RiskGate().evaluate(_analysis(score))

        assert verdict.allowed is True
        assert verdict.audit is True
        assert verdict.force_untrusted is force_untrusted

    def test_critical_is_rejected(self) -> None:
        verdict = RiskGate().evaluate(_analysis(0.85))
        assert verdict.allowed is False

    def test_enforce_raises_for_rejection(self) -> None:
        with pytest.raises(DeviceRejectedError) as exc_info:
            RiskGate().enforce(_analysis(0.95))
        assert exc_info.value.retryable is False

    def test_enforce_returns_verdict(self) -> None:
        assert RiskGate().enforce(_analysis(0.2)).allowed is True
