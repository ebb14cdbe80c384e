"""
Domain errors raised by the tracking services.

The HTTP layer maps each class to a status code; see ``linktrack.create_app``.
"""


class TrackingError(Exception):
    """Base class for all tracking domain errors."""

    status_code = 400

    def __init__(self, message: str, tracking_id: str = None):
        super().__init__(message)
        self.message = message
        self.tracking_id = tracking_id

    def to_dict(self) -> dict:
        body = {'error': type(self).__name__, 'message': self.message}
        if self.tracking_id:
            body['tracking_id'] = self.tracking_id
        return body


class LinkNotFound(TrackingError):
    status_code = 404

    def __init__(self, tracking_id: str):
        super().__init__(f"Tracking link not found: {tracking_id}", tracking_id)


class LinkExpired(TrackingError):
    status_code = 410

    def __init__(self, tracking_id: str):
        super().__init__(f"Tracking link has expired: {tracking_id}", tracking_id)


class LimitReached(TrackingError):
    status_code = 409

    def __init__(self, tracking_id: str, max_clicks: int = None):
        super().__init__(f"Click limit reached for tracking link: {tracking_id}", tracking_id)
        self.max_clicks = max_clicks


class SessionNotFound(TrackingError):
    status_code = 404

    def __init__(self, tracking_id: str, session_id: str):
        super().__init__(f"Session {session_id} not found for tracking link: {tracking_id}", tracking_id)
        self.session_id = session_id


class Unauthorized(TrackingError):
    status_code = 403

    def __init__(self, message: str = "Link administration is not permitted"):
        super().__init__(message)


class ConcurrentUpdateError(TrackingError):
    """The link kept changing underneath us for every retry."""

    status_code = 409

    def __init__(self, tracking_id: str, attempts: int):
        super().__init__(
            f"Tracking link {tracking_id} was modified concurrently ({attempts} attempts)",
            tracking_id,
        )
        self.attempts = attempts


class LedgerWriteError(TrackingError):
    """
    Revenue ledger rejected an attributed conversion.

    The conversion itself is already committed; ``conversion`` carries its
    summary so callers can report it and retry the ledger write.
    """

    status_code = 502

    def __init__(self, tracking_id: str, conversion: dict, cause: Exception):
        super().__init__(f"Failed to record revenue for tracking link {tracking_id}: {cause}", tracking_id)
        self.conversion = conversion
        self.cause = cause

    def to_dict(self) -> dict:
        body = super().to_dict()
        body['conversion'] = self.conversion
        return body
