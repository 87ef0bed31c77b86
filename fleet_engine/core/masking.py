"""Redaction of sensitive job payload values before they reach audit records."""

from typing import Any, Dict

MASK = "[redacted]"

SENSITIVE_KEYS = {
    "password",
    "pass",
    "token",
    "secret",
    "apikey",
    "privatekey",
    "authorization",
    "cookie",
    "dkim",
    "smtppass",
    "sshkey",
    "authorizedkey",
    "authorizedkeys",
    "sftpkeys",
}


def _normalize(key: str) -> str:
    return "".join(ch for ch in key.lower() if ch.isalnum())


def is_sensitive_key(key: str) -> bool:
    normalized = _normalize(key)
    if normalized in SENSITIVE_KEYS:
        return True
    return any(normalized.endswith(candidate) for candidate in ("password", "token", "secret"))


def mask_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: MASK if isinstance(key, str) and is_sensitive_key(key) else mask_value(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [mask_value(item) for item in value]
    return value


def mask_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    masked = mask_value(payload or {})
    return masked if isinstance(masked, dict) else {}
