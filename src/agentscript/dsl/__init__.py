"""AgentScript language module.

Components:
- Tokenizer and two-dialect parser with error recovery
- Validator, linter and corrector/serializer
- Template renderer and built-in function library
- Orchestrator executing agents against capability providers
- Hot-reload parser with a modification-time checked cache
"""

from .cache import AgentParseCache, CacheEntry
from .corrector import AgentCorrector, CorrectionResult, serialize
from .functions import FunctionLibrary
from .hot_reload import FileParseResult, HotReloadParser
from .linter import AgentLinter, LintIssue, lint
from .orchestrator import AgentOrchestrator
from .parser import AgentParser, detect_dialect, parse
from .renderer import TemplateRenderer, is_truthy
from .tokenizer import DSLTokenizer, TokenStream, tokenize
from .types import (
    AgentAST,
    AgentScriptError,
    ConfigurationError,
    Diagnostic,
    Dialect,
    DSLSyntaxError,
    DSLValidationError,
    ExecutionCancelledError,
    ExecutionContext,
    ExecutionPhase,
    ExecutionResult,
    ParseError,
    ParseResult,
    SecretDef,
    SecretKind,
    Step,
    StepExecutionError,
    StepKind,
    Token,
    TokenType,
    Trigger,
    ValidationLevel,
    ValidationResult,
    VarDef,
    VarKind,
)
from .validator import AgentValidator, extract_references, validate

__all__ = [
    # Main interfaces
    "AgentParser",
    "AgentOrchestrator",
    "HotReloadParser",
    "parse",
    "detect_dialect",
    "validate",
    "lint",
    "serialize",
    # Core components
    "DSLTokenizer",
    "TokenStream",
    "tokenize",
    "AgentValidator",
    "AgentLinter",
    "AgentCorrector",
    "TemplateRenderer",
    "FunctionLibrary",
    "AgentParseCache",
    "extract_references",
    "is_truthy",
    # Data structures
    "AgentAST",
    "Trigger",
    "SecretDef",
    "SecretKind",
    "VarDef",
    "VarKind",
    "Step",
    "StepKind",
    "Token",
    "TokenType",
    "Dialect",
    "Diagnostic",
    "ValidationLevel",
    "ValidationResult",
    "ParseResult",
    "LintIssue",
    "CorrectionResult",
    "CacheEntry",
    "FileParseResult",
    "ExecutionContext",
    "ExecutionPhase",
    "ExecutionResult",
    # Exceptions
    "AgentScriptError",
    "DSLSyntaxError",
    "ParseError",
    "DSLValidationError",
    "ConfigurationError",
    "StepExecutionError",
    "ExecutionCancelledError",
]
