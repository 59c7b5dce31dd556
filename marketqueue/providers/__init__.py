from .base import CallConfig, ProviderConfig

__all__ = ["CallConfig", "ProviderConfig"]
