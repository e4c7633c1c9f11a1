"""
MercadoPago webhook authentication.

Two independent checks, each enabled by its own setting:
- shared token in the notification URL (?token=...)
- x-signature HMAC-SHA256 over "id:{data.id};request-id:{x-request-id};ts:{ts};"
"""
import hashlib
import hmac
import re
import time
from dataclasses import dataclass

# Timestamps below this are seconds, above are milliseconds.
_MS_THRESHOLD = 10_000_000_000


class WebhookAuthError(Exception):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


@dataclass
class ParsedSignature:
    ts: str
    v1: str


def parse_signature_header(header: str) -> ParsedSignature | None:
    """Accepts "ts=..,v1=.." and "ts=..; v1=..". Returns None when either part is missing."""
    values: dict[str, str] = {}
    for part in re.split(r"[,;]+", header or ""):
        key, sep, value = part.strip().partition("=")
        if not sep or not key.strip() or not value.strip():
            continue
        values[key.strip()] = value.strip()
    if not values.get("ts") or not values.get("v1"):
        return None
    return ParsedSignature(ts=values["ts"], v1=values["v1"])


def timestamp_ms(ts: str) -> int | None:
    try:
        n = int(float(ts))
    except ValueError:
        return None
    return n * 1000 if n < _MS_THRESHOLD else n


def signature_manifest(data_id: str, request_id: str, ts: str) -> str:
    return f"id:{data_id.lower()};request-id:{request_id};ts:{ts};"


def compute_signature(secret: str, data_id: str, request_id: str, ts: str) -> str:
    return hmac.new(
        secret.encode("utf-8"),
        signature_manifest(data_id, request_id, ts).encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def verify_webhook(
    *,
    token_setting: str,
    secret_setting: str,
    provided_token: str | None,
    signature_header: str | None,
    request_id: str | None,
    data_id: str | None,
    tolerance_seconds: int = 300,
    now_ms: int | None = None,
) -> bool:
    """
    Raise WebhookAuthError if a configured check fails.
    Returns False when neither check is configured (unsigned delivery accepted), True otherwise.
    """
    if token_setting:
        if not provided_token or not hmac.compare_digest(provided_token.strip(), token_setting.strip()):
            raise WebhookAuthError("invalid_token")

    if secret_setting:
        if not signature_header or not request_id:
            raise WebhookAuthError("missing_signature_headers")
        sig = parse_signature_header(signature_header)
        if sig is None:
            raise WebhookAuthError("invalid_signature_format")
        ts_ms = timestamp_ms(sig.ts)
        current = now_ms if now_ms is not None else int(time.time() * 1000)
        if ts_ms is None or abs(current - ts_ms) > tolerance_seconds * 1000:
            raise WebhookAuthError("timestamp_out_of_range")
        if not data_id:
            raise WebhookAuthError("missing_data_id")
        expected = compute_signature(secret_setting, data_id, request_id, sig.ts)
        if not hmac.compare_digest(expected, sig.v1):
            raise WebhookAuthError("invalid_signature")

    return bool(token_setting or secret_setting)
