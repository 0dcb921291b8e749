"""
Service-layer error taxonomy.

Every core operation either completes or raises one of these; route handlers
translate them into the JSON error envelope.
"""


class ValidationError(Exception):
    """Caller-supplied data violates a business rule. Never retried automatically."""

    def __init__(self, code: str, message: str = None):
        self.code = code
        self.message = message or code
        super().__init__(self.message)

    def __str__(self):
        return f"{self.code}: {self.message}"


class SyncError(Exception):
    """The document store or network failed; the caller decides whether to retry."""
    pass


class LocationPermissionError(Exception):
    """A location permission tier (foreground or background) was denied."""

    def __init__(self, capability: str, message: str):
        self.capability = capability
        self.message = message
        super().__init__(message)


class InvalidDriverState(Exception):
    """A driver record would leave, or already holds, a pairing outside the state table."""
    pass


class AuthenticationError(Exception):
    """Login could not establish a session for the presented identity."""
    pass
