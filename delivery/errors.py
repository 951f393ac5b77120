"""
Error taxonomy shared by the lifecycle manager, the directions client and the
HTTP layer. Everything raised on purpose derives from DeliveryError.
"""


class DeliveryError(Exception):
    """Base class for domain errors."""


class ValidationError(DeliveryError):
    """Malformed input, rejected before any store or network call."""


class InvalidTransition(DeliveryError):
    """The order is not in a state that allows the requested move."""


class Unauthorized(DeliveryError):
    """The acting customer or driver may not mutate this order."""


class NotFound(DeliveryError):
    """Referenced order, store or user does not exist."""


class PinMismatch(DeliveryError):
    """Entered delivery PIN differs from the order's PIN. Retryable."""


class DecodeError(DeliveryError):
    """Encoded polyline ended in the middle of a value."""


class RouteError(DeliveryError):
    """No usable route between two points."""


class NoRoute(RouteError):
    """Provider answered but returned zero candidate routes."""


class RouteUnavailable(RouteError):
    """Provider could not be reached or answered with garbage."""
