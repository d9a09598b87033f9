"""
CRM Service Exceptions

Raised by the service layer when a backend call cannot be turned into a
usable result. Collection services translate and swallow their errors;
these are for the flows where the caller must branch on failure.
"""


class CRMError(Exception):
    """Base exception for all service errors."""
    pass


class PlanLookupError(CRMError):
    """Raised when the tenant plan row cannot be fetched."""
    pass


class SeatAccountingError(CRMError):
    """Raised when seat data cannot be read or a seat cannot be added."""
    pass


class NotificationError(CRMError):
    """
    Raised when a notification write does not reach the backend.

    The feed has already reverted its local state when this is raised.
    """
    def __init__(self, message: str, notification_id: str = None):
        self.notification_id = notification_id
        super().__init__(message)


class TenantResolutionError(CRMError):
    """
    Raised when no usable tenant can be resolved for a request.

    The message is user-facing (French) and rendered as-is.
    """
    def __init__(self, message: str, slug: str = None):
        self.slug = slug
        super().__init__(message)


class MessagingError(CRMError):
    """Raised when an email/SMS request is rejected before dispatch."""
    pass


class ConsumptionError(CRMError):
    """Raised when king consumption or limit operations fail."""
    pass
