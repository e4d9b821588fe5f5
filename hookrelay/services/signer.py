"""
Webhook payload signing.

Receivers verify a delivery by recomputing HMAC-SHA256 over the raw request
body with their copy of the endpoint secret.
"""
import json
import hmac
import hashlib

from hookrelay.exceptions import MissingSecretError


SIGNATURE_PREFIX = "sha256="


def serialize_payload(payload: dict) -> bytes:
    """Serialize a payload to the exact bytes that are signed and sent."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sign(secret: str | None, payload: bytes) -> str:
    """
    Generate HMAC-SHA256 hex signature for a webhook payload.

    Args:
        secret: Endpoint signing secret
        payload: Raw request body

    Returns:
        Lowercase hex digest

    Raises:
        MissingSecretError: if the secret is empty or missing
    """
    if not secret:
        raise MissingSecretError()

    return hmac.new(
        secret.encode("utf-8"),
        payload,
        hashlib.sha256
    ).hexdigest()


def verify_signature(secret: str | None, payload: bytes, signature: str | None) -> bool:
    """
    Verify a webhook signature in constant time.

    Accepts the bare hex digest or the "sha256=" prefixed form.
    """
    if not secret or not signature:
        return False

    if signature.startswith(SIGNATURE_PREFIX):
        signature = signature[len(SIGNATURE_PREFIX):]

    expected = sign(secret, payload)
    return hmac.compare_digest(expected, signature.lower())
