"""
HookRelay exception hierarchy.

Configuration errors are terminal for a delivery job: the worker marks the
job failed without retrying. Replay errors map to 404 responses.
"""


class HookRelayError(Exception):
    """Base exception for all HookRelay errors."""

    code: str = "hookrelay_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


# ============================================
# Delivery configuration errors (never retried)
# ============================================

class DeliveryConfigurationError(HookRelayError):
    """An endpoint cannot receive deliveries as configured."""

    code: str = "delivery_configuration_error"


class MissingSecretError(DeliveryConfigurationError):
    """Endpoint has no signing secret."""

    code: str = "missing_secret"

    def __init__(self, message: str = "Endpoint secret is empty or missing"):
        super().__init__(message)


class InvalidEndpointURLError(DeliveryConfigurationError):
    """Endpoint URL is malformed or uses an unsupported scheme."""

    code: str = "invalid_endpoint_url"

    def __init__(self, url: str, reason: str):
        self.url = url
        super().__init__(f"Invalid endpoint URL ({reason}): {url}")


class EndpointInactiveError(DeliveryConfigurationError):
    """Endpoint has been disabled by its producer."""

    code: str = "endpoint_inactive"

    def __init__(self, endpoint_id: str):
        self.endpoint_id = endpoint_id
        super().__init__(f"Endpoint is inactive: {endpoint_id}")


class EndpointNotFoundError(DeliveryConfigurationError):
    """Endpoint referenced by a job no longer exists."""

    code: str = "endpoint_not_found"

    def __init__(self, endpoint_id: str):
        self.endpoint_id = endpoint_id
        super().__init__(f"Endpoint not found: {endpoint_id}")


# ============================================
# Replay errors
# ============================================

class ReplayError(HookRelayError):
    """A replay or test delivery request cannot be honoured."""

    code: str = "replay_error"


class EndpointAccessError(ReplayError):
    """Endpoint does not exist or belongs to another producer."""

    code: str = "endpoint_not_found"

    def __init__(self, endpoint_id: str):
        self.endpoint_id = endpoint_id
        super().__init__(f"Webhook endpoint not found or unauthorized: {endpoint_id}")


class LogEntryNotFoundError(ReplayError):
    """Delivery log entry does not exist for the given endpoint."""

    code: str = "log_entry_not_found"

    def __init__(self, log_entry_id: str):
        self.log_entry_id = log_entry_id
        super().__init__(f"Event log not found: {log_entry_id}")
