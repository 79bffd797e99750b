"""Webhook payload signer using HMAC-SHA256."""

import hashlib
import hmac
import secrets
import string

from solarcrm.webhooks.exceptions import WebhookConfigError

SECRET_LENGTH = 32
SECRET_ALPHABET = string.ascii_letters + string.digits


def generate_webhook_secret(length: int = SECRET_LENGTH) -> str:
    """Generate a random alphanumeric endpoint secret."""
    return "".join(secrets.choice(SECRET_ALPHABET) for _ in range(length))


class WebhookSigner:
    """Signs webhook payloads for verification."""

    @staticmethod
    def _check_secret(secret: str) -> bytes:
        if not isinstance(secret, str) or not secret.strip():
            raise WebhookConfigError("Webhook secret is missing or malformed")
        return secret.encode("utf-8")

    @staticmethod
    def sign(payload: bytes, secret: str) -> str:
        """
        Generate HMAC-SHA256 signature for a webhook payload.

        Args:
            payload: The exact body bytes that will be transmitted
            secret: The endpoint's shared secret

        Returns:
            Lowercase hex digest

        Raises:
            WebhookConfigError: If the secret is empty or not a string
        """
        key = WebhookSigner._check_secret(secret)
        return hmac.new(key, payload, hashlib.sha256).hexdigest()

    @staticmethod
    def verify(payload: bytes, signature: str, secret: str) -> bool:
        """
        Verify a webhook signature.

        Args:
            payload: The raw body bytes as received
            signature: The value of the X-Webhook-Signature header
            secret: The shared secret

        Returns:
            True if signature is valid, False otherwise
        """
        expected = WebhookSigner.sign(payload, secret)
        if not isinstance(signature, str):
            return False
        return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))

    @staticmethod
    def get_headers(
        payload: bytes,
        secret: str,
        timestamp: str,
        user_agent: str,
    ) -> dict[str, str]:
        """
        Generate all webhook HTTP headers including signature.

        Args:
            payload: The body bytes to sign
            secret: The endpoint's shared secret
            timestamp: ISO-8601 send time
            user_agent: Value for the User-Agent header

        Returns:
            Dictionary of HTTP headers
        """
        return {
            "Content-Type": "application/json",
            "X-Webhook-Signature": WebhookSigner.sign(payload, secret),
            "X-Webhook-Timestamp": timestamp,
            "User-Agent": user_agent,
        }
