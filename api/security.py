"""Deployment checks and response hardening for the negotiation API.

The negotiator has no user accounts, so this module only guards the
configuration the server runs with: the translation key, CORS, the public
join-link URL, TLS and the live-mirror cap.
"""

import os
import re
from datetime import datetime, timezone
from typing import Dict, List, Optional
from urllib.parse import urlsplit

import msgspec
from loguru import logger


PLACEHOLDER_KEYS = {
    "your_gemini_api_key_here",
    "your_api_key_here",
    "changeme",
    "placeholder",
    "test_key",
}

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}


class ConfigReport(msgspec.Struct):
    """Outcome of the startup configuration check."""
    errors: List[str] = msgspec.field(default_factory=list)
    warnings: List[str] = msgspec.field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def looks_like_api_key(value: Optional[str]) -> bool:
    """True for a plausible Gemini key: `AIza` + 35 chars, or a long opaque token."""
    if not value or value.lower() in PLACEHOLDER_KEYS:
        return False
    if value.startswith("AIza"):
        return len(value) == 39
    return len(value) >= 20 and re.fullmatch(r"[A-Za-z0-9_-]+", value) is not None


def _check_translation(report: ConfigReport) -> None:
    key = os.getenv("GOOGLE_API_KEY")
    if not key:
        report.warnings.append("GOOGLE_API_KEY is not set; messages will stay untranslated")
    elif not looks_like_api_key(key):
        report.errors.append("GOOGLE_API_KEY looks like a placeholder or is malformed")


def _check_origins(report: ConfigReport) -> None:
    origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]
    if not origins:
        report.warnings.append("CORS_ORIGINS is empty; the dashboard defaults apply")
    elif "*" in origins:
        report.warnings.append("CORS_ORIGINS allows every origin")


def _check_public_url(report: ConfigReport) -> None:
    url = os.getenv("PUBLIC_BASE_URL")
    if not url:
        return
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        report.errors.append(f"PUBLIC_BASE_URL is not an absolute http(s) URL: {url}")
    elif parts.scheme == "http" and parts.hostname not in ("localhost", "127.0.0.1"):
        report.warnings.append("PUBLIC_BASE_URL uses plain http; join links travel unencrypted")


def _check_limits(report: ConfigReport) -> None:
    raw = os.getenv("MAX_LIVE_SESSIONS", "100")
    if not raw.isdigit() or int(raw) < 1:
        report.errors.append(f"MAX_LIVE_SESSIONS must be a positive integer, got {raw!r}")

    database_url = os.getenv("DATABASE_URL", "sqlite:///./negotiator.db")
    if not database_url.startswith("sqlite:///"):
        report.errors.append("DATABASE_URL must be a sqlite:/// URL")


def validate_environment() -> ConfigReport:
    """Inspect the environment the API is about to serve with."""
    report = ConfigReport()
    _check_translation(report)
    _check_origins(report)
    _check_public_url(report)
    _check_limits(report)

    if tls_config() is None:
        report.warnings.append("TLS is off; terminate HTTPS in front of the API")
    if os.getenv("LOG_LEVEL", "INFO").upper() == "DEBUG":
        report.warnings.append("LOG_LEVEL=DEBUG writes message drafts to the logs")
    return report


def tls_config() -> Optional[Dict[str, str]]:
    """Certificate and key paths for uvicorn, or None when TLS is off or incomplete."""
    if os.getenv("TLS_ENABLED", "false").lower() != "true":
        return None

    paths = {
        "ssl_certfile": os.getenv("TLS_CERT_PATH"),
        "ssl_keyfile": os.getenv("TLS_KEY_PATH"),
    }
    for name, path in paths.items():
        if not path:
            logger.warning(f"TLS_ENABLED is true but {name} is not configured")
            return None
        if not os.path.isfile(path):
            logger.error(f"TLS file missing for {name}: {path}")
            return None
    return paths


def audit(event: str, session_id: str, **details) -> None:
    """Record a negotiation lifecycle event (created, joined, ratified)."""
    logger.bind(session_id=session_id, component="audit").info(
        f"AUDIT {event}",
        event=event,
        at=datetime.now(timezone.utc).isoformat(),
        details=details
    )
