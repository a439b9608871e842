class PortPosError(Exception):
    """Base error for the PortPos integration.

    ``user_message`` is safe to show at checkout; ``str(exc)`` may carry
    provider detail meant for logs and order notes.
    """

    default_user_message = "PortPos payment could not be processed."

    def __init__(self, message: str = "", user_message: str | None = None):
        super().__init__(message or self.default_user_message)
        self.user_message = user_message or self.default_user_message


class ConfigurationError(PortPosError):
    default_user_message = "PortPos is not configured correctly."


class TransportError(PortPosError):
    default_user_message = "Unable to connect to PortPos."


class ProviderRejection(PortPosError):
    default_user_message = "PortPos rejected the payment request."


class InvoiceMismatch(PortPosError):
    default_user_message = "Payment could not be verified."
