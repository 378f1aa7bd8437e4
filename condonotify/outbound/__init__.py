from .factory import build_adapter, parse_provider
from .gateway import GatewaySettings, Provider, ProviderAdapter, SendResult, TemplateSender
from .phone import normalize_phone

__all__ = [
    "GatewaySettings",
    "Provider",
    "ProviderAdapter",
    "SendResult",
    "TemplateSender",
    "build_adapter",
    "normalize_phone",
    "parse_provider",
]
