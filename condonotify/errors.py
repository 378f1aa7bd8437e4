"""
Dispatcher exception hierarchy.

Transport and provider failures are never raised; adapters report them as
SendResult values. Only the conditions below abort a dispatch.
"""


class DispatchError(RuntimeError):
    pass


class ConfigurationError(DispatchError):
    """No usable gateway configuration for this dispatch."""


class UnknownProviderError(ConfigurationError):
    def __init__(self, provider: str) -> None:
        super().__init__(f"Unknown WhatsApp provider: {provider}")
        self.provider = provider


class TargetNotFoundError(DispatchError):
    pass


class UnknownNotificationTypeError(DispatchError):
    pass
