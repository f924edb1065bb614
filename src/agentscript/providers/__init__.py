"""Capability providers backing model-driven step kinds."""

from .contract import (
    AuthFailure,
    CallableProvider,
    CapabilityProvider,
    InvalidInput,
    ProviderError,
    ProviderRegistry,
    ProviderTimeout,
    RateLimited,
    Unavailable,
)
from .openai_provider import OpenAIProvider

__all__ = [
    "CapabilityProvider",
    "CallableProvider",
    "ProviderRegistry",
    "OpenAIProvider",
    "ProviderError",
    "AuthFailure",
    "RateLimited",
    "ProviderTimeout",
    "InvalidInput",
    "Unavailable",
]
