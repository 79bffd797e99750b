"""Webhook error types."""


class WebhookError(Exception):
    """Base class for webhook errors."""


class WebhookConfigError(WebhookError, ValueError):
    """Invalid endpoint configuration, secret, event type or event data."""


class EndpointNotFoundError(WebhookError, LookupError):
    """Webhook endpoint does not exist (or belongs to another tenant)."""

    def __init__(self, endpoint_id):
        super().__init__(f"Webhook endpoint not found: {endpoint_id}")
        self.endpoint_id = endpoint_id
