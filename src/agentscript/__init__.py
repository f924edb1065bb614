"""AgentScript - declarative agent workflows.

Parse, validate, lint, correct and execute agent definitions written in
the AgentScript DSL against pluggable capability providers.
"""

__version__ = "0.1.0"

from .config import AgentScriptConfig, load_config

# dsl first: credentials and providers import dsl.types
from .dsl import (
    AgentAST,
    AgentCorrector,
    AgentLinter,
    AgentOrchestrator,
    AgentParser,
    AgentValidator,
    HotReloadParser,
    parse,
    serialize,
)
from .credentials import SecretResolver, mask_secret
from .logging_config import setup_logging
from .providers import CapabilityProvider, OpenAIProvider, ProviderRegistry

__all__ = [
    "__version__",
    "AgentScriptConfig",
    "load_config",
    "setup_logging",
    "SecretResolver",
    "mask_secret",
    "AgentAST",
    "AgentParser",
    "AgentValidator",
    "AgentLinter",
    "AgentCorrector",
    "AgentOrchestrator",
    "HotReloadParser",
    "CapabilityProvider",
    "ProviderRegistry",
    "OpenAIProvider",
    "parse",
    "serialize",
]
