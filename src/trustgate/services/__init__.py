"""trustgate service layer.

This package contains the trust-and-session core:
- UserAgentParser: Browser, OS, device and native app detection
- FingerprintGenerator: Primary/secondary device fingerprints from headers
- ConsistencyValidator: Cross-checks between device headers and user agent
- BehavioralRiskAnalyzer / RiskGate: Composite risk score and admission verdict
- DeviceTrustEngine: Device create / refresh / reactivate / transfer / reject
- SessionAdmissionController: Per-user and per-device session ceilings
- RateLimiter: Windowed limits for OTP send and login
- SessionArchiver: Archival and retention of terminated sessions
- LoginService: OTP login, refresh and logout orchestration
"""

from trustgate.services.archive import SessionArchiver
from trustgate.services.audit import AuditEvent, AuditSink, SecurityEventType
from trustgate.services.consistency import ConsistencyValidator
from trustgate.services.device_trust import DeviceDecision, DeviceOutcome, DeviceTrustEngine
from trustgate.services.fingerprint import DeviceFingerprint, FingerprintGenerator
from trustgate.services.login import LoginAction, LoginResult, LoginService
from trustgate.services.rate_limit import RateLimiter
from trustgate.services.risk import BehavioralRiskAnalyzer, RiskAnalysis, RiskGate, RiskLevel
from trustgate.services.session import SessionAdmissionController
from trustgate.services.user_agent import ParsedUserAgent, UserAgentParser

__all__ = [
    "AuditEvent",
    "AuditSink",
    "BehavioralRiskAnalyzer",
    "ConsistencyValidator",
    "DeviceDecision",
    "DeviceFingerprint",
    "DeviceOutcome",
    "DeviceTrustEngine",
    "FingerprintGenerator",
    "LoginAction",
    "LoginResult",
    "LoginService",
    "ParsedUserAgent",
    "RateLimiter",
    "RiskAnalysis",
    "RiskGate",
    "RiskLevel",
    "SecurityEventType",
    "SessionAdmissionController",
    "SessionArchiver",
    "UserAgentParser",
]
