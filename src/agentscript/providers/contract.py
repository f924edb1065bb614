"""Capability provider contract.

Providers back the llm, vision, audio, vectordb and finetune step kinds.
The orchestrator only knows this interface; concrete backends are
registered in a ProviderRegistry passed to it.
"""

import inspect
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Iterable

from loguru import logger

from ..dsl.types import AgentScriptError, ExecutionContext, Step, StepKind


class ProviderError(AgentScriptError):
    """A provider call failed."""

    category = "provider"

    def __init__(self, message: str, provider: str | None = None):
        self.provider = provider
        super().__init__(f"[{provider}] {message}" if provider else message)


class AuthFailure(ProviderError):
    category = "auth"


class RateLimited(ProviderError):
    category = "rate_limited"


class ProviderTimeout(ProviderError):
    category = "timeout"


class InvalidInput(ProviderError):
    category = "invalid_input"


class Unavailable(ProviderError):
    category = "unavailable"


class CapabilityProvider(ABC):
    """Abstract base class for capability backends."""

    name: str = "provider"
    kinds: frozenset = frozenset()

    @abstractmethod
    async def execute(
        self,
        kind: StepKind,
        model: str | None,
        rendered_input: dict[str, Any],
        context: ExecutionContext,
    ) -> Any:
        """Run one capability request.

        Args:
            kind: Step kind being executed
            model: Model name from the step, if any
            rendered_input: Step fields with templates already rendered
            context: Execution context (read-only for providers)

        Returns:
            Raw result bound to the step's ``save`` name

        Raises:
            ProviderError: One of the categorized failures

        """

    def supports(self, kind: StepKind) -> bool:
        return not self.kinds or kind in self.kinds

    async def close(self) -> None:
        """Release client resources."""


class CallableProvider(CapabilityProvider):
    """Adapts a plain (async or sync) function to the provider contract."""

    def __init__(
        self,
        func: Callable[..., Any | Awaitable[Any]],
        name: str = "callable",
        kinds: Iterable[StepKind] = (),
    ):
        self.func = func
        self.name = name
        self.kinds = frozenset(kinds)

    async def execute(self, kind, model, rendered_input, context):
        result = self.func(kind, model, rendered_input, context)
        if inspect.isawaitable(result):
            result = await result
        return result


class ProviderRegistry:
    """Name to provider mapping with per-kind defaults."""

    def __init__(self):
        self._providers: dict[str, CapabilityProvider] = {}
        self._defaults: dict[StepKind, str] = {}

    def register(
        self,
        name: str,
        provider: CapabilityProvider,
        default_for: Iterable[StepKind] = (),
    ) -> None:
        """Register ``provider`` under ``name``; optionally make it the default for kinds."""
        self._providers[name] = provider
        for kind in default_for:
            self._defaults[kind] = name
        logger.debug(f"Registered provider '{name}' (default for: {[k.value for k in default_for]})")

    def get(self, name: str) -> CapabilityProvider | None:
        return self._providers.get(name)

    def names(self) -> list[str]:
        return sorted(self._providers)

    def resolve(self, step: Step) -> CapabilityProvider | None:
        """Provider named by the step, else the default for its kind."""
        if step.provider:
            return self._providers.get(step.provider)
        name = self._defaults.get(step.kind)
        return self._providers.get(name) if name else None

    async def close(self) -> None:
        for name, provider in self._providers.items():
            try:
                await provider.close()
            except Exception as e:
                logger.warning(f"Error closing provider '{name}': {e}")
