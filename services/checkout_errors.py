class CheckoutError(Exception):
    """Base class for failures surfaced to the caller of the verify-payment function."""


class Unauthorized(CheckoutError):
    pass


class InvalidRequest(CheckoutError):
    pass


class ConfigurationError(CheckoutError):
    pass


class PaymentVerificationFailed(CheckoutError):
    pass


class OrderCreationFailed(CheckoutError):
    pass


class CheckoutInProgress(CheckoutError):
    pass
