"""trustgate: device trust and session admission core for OTP identity providers.

Packages:
- core: configuration, settings accessor, error taxonomy
- db: SQLAlchemy models, repositories, unit of work, migrations
- services: user agent parsing, fingerprinting, risk scoring, device trust,
  session admission, rate limiting, archival and the login flow
- worker: scheduled archive sweeps
- api: FastAPI adapter for the OTP login endpoints
"""

__version__ = "0.1.0"
