"""Domain errors raised by the matching and lifecycle services."""


class RideEngineError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, detail: str = ""):
        super().__init__(detail)
        self.detail = detail or self.__class__.__name__


class RideNotFound(RideEngineError):
    status_code = 404
    code = "not_found"


class Forbidden(RideEngineError):
    """Actor is not the ride's bound rider/driver for this transition."""
    status_code = 403
    code = "forbidden"


class NotEligible(Forbidden):
    """Driver has not finished payment onboarding."""
    code = "payment_setup_required"


class InvalidTransition(RideEngineError):
    status_code = 409
    code = "invalid_transition"


class OfferExpired(RideEngineError):
    status_code = 410
    code = "offer_expired"


class StorageUnavailable(RideEngineError):
    """Storage or transport fault. Callers should retry with backoff."""
    status_code = 503
    code = "unavailable"


class CollaboratorUnavailable(StorageUnavailable):
    pass
