"""
AgentScript types and data structures.
Tokens, the immutable agent AST, diagnostics, execution context and the
exception hierarchy shared by the parser, validator and orchestrator.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


DEFAULT_TIMEOUT_MS = 60000


class TokenType(str, Enum):
    """Token kinds produced by the tokenizer."""
    AGENT_START = "agent_start"
    AGENT_END = "agent_end"
    DESCRIPTION = "description"
    TRIGGER = "trigger"
    SECRETS = "secrets"
    VARS = "vars"
    STEPS = "steps"
    OUTPUTS = "outputs"
    OUTPUT = "output"

    TYPE = "type"
    METHOD = "method"
    PATH = "path"
    NAME = "name"
    VALUE = "value"
    FROM = "from"
    REQUIRED = "required"
    DEFAULT = "default"
    ID = "id"
    KIND = "kind"
    PROVIDER = "provider"
    MODEL = "model"
    PROMPT = "prompt"
    INPUT = "input"
    OPERATION = "operation"
    WHEN = "when"
    SAVE = "save"
    RETRIES = "retries"
    TIMEOUT_MS = "timeout_ms"

    IDENTIFIER = "identifier"
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"

    COLON = "colon"
    DASH = "dash"
    PIPE = "pipe"
    LBRACE = "lbrace"
    RBRACE = "rbrace"
    LBRACKET = "lbracket"
    RBRACKET = "rbracket"
    SLASH = "slash"
    EQUALS = "equals"
    COMMA = "comma"

    NEWLINE = "newline"
    EOF = "eof"


# Words the tokenizer promotes from IDENTIFIER to a dedicated kind.
KEYWORDS: Dict[str, TokenType] = {
    "@agent": TokenType.AGENT_START,
    "@end": TokenType.AGENT_END,
    "description": TokenType.DESCRIPTION,
    "trigger": TokenType.TRIGGER,
    "secrets": TokenType.SECRETS,
    "vars": TokenType.VARS,
    "variables": TokenType.VARS,
    "steps": TokenType.STEPS,
    "outputs": TokenType.OUTPUTS,
    "output": TokenType.OUTPUT,
    "type": TokenType.TYPE,
    "method": TokenType.METHOD,
    "path": TokenType.PATH,
    "name": TokenType.NAME,
    "value": TokenType.VALUE,
    "from": TokenType.FROM,
    "required": TokenType.REQUIRED,
    "default": TokenType.DEFAULT,
    "id": TokenType.ID,
    "kind": TokenType.KIND,
    "provider": TokenType.PROVIDER,
    "model": TokenType.MODEL,
    "prompt": TokenType.PROMPT,
    "input": TokenType.INPUT,
    "operation": TokenType.OPERATION,
    "when": TokenType.WHEN,
    "save": TokenType.SAVE,
    "retries": TokenType.RETRIES,
    "timeout_ms": TokenType.TIMEOUT_MS,
    "true": TokenType.BOOLEAN,
    "false": TokenType.BOOLEAN,
}

SECTION_TOKENS = frozenset({
    TokenType.DESCRIPTION,
    TokenType.TRIGGER,
    TokenType.SECRETS,
    TokenType.VARS,
    TokenType.STEPS,
    TokenType.OUTPUTS,
    TokenType.OUTPUT,
    TokenType.AGENT_END,
})


@dataclass(frozen=True)
class Token:
    """Single lexical token with its 1-based source position."""
    kind: TokenType
    value: str
    line: int
    column: int

    def is_word(self) -> bool:
        """True for identifiers and every keyword kind (anything usable as a name)."""
        return self.kind == TokenType.IDENTIFIER or self.value in KEYWORDS


class Dialect(str, Enum):
    """Surface syntaxes accepted by the parser."""
    TERSE = "terse"
    DECLARATIVE = "declarative"


class StepKind(str, Enum):
    """Closed set of step variants."""
    LLM = "llm"
    HTTP = "http"
    FUNCTION = "function"
    VISION = "vision"
    AUDIO = "audio"
    VECTORDB = "vectordb"
    FINETUNE = "finetune"

    @classmethod
    def parse(cls, value: str) -> Optional["StepKind"]:
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


PROVIDER_KINDS = frozenset({
    StepKind.LLM,
    StepKind.VISION,
    StepKind.AUDIO,
    StepKind.VECTORDB,
    StepKind.FINETUNE,
})


class SecretKind(str, Enum):
    ENV = "env"
    LITERAL = "literal"


class VarKind(str, Enum):
    INPUT = "input"
    ENV = "env"
    LITERAL = "literal"


@dataclass(frozen=True)
class Trigger:
    """What starts the agent, e.g. ``http POST /hello``."""
    type: str
    method: Optional[str] = None
    path: Optional[str] = None


@dataclass(frozen=True)
class SecretDef:
    kind: SecretKind
    reference: str


@dataclass(frozen=True)
class VarDef:
    """
    Variable declaration.

    ``source`` is a dotted path for input/env variables and the literal
    text for literal variables.
    """
    kind: VarKind
    source: str
    required: bool = False
    default: Optional[str] = None


@dataclass(frozen=True)
class Step:
    """
    One unit of work. Optional fields stay None when the author did not
    write them, so tooling can tell explicit values from defaults.
    """
    id: str
    kind: Optional[StepKind] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    prompt: Optional[str] = None
    input: Optional[str] = None
    text: Optional[str] = None
    url: Optional[str] = None
    method: Optional[str] = None
    headers: Optional[Dict[str, str]] = None
    body: Any = None
    operation: Optional[str] = None
    backend: Optional[str] = None
    collection: Optional[str] = None
    query: Optional[str] = None
    top_k: Optional[int] = None
    function: Optional[str] = None
    args: Optional[Dict[str, Any]] = None
    when: Optional[str] = None
    save: Optional[str] = None
    retries: Optional[int] = None
    timeout_ms: Optional[int] = None
    extra: Dict[str, str] = field(default_factory=dict)

    @property
    def max_attempts(self) -> int:
        return (self.retries or 0) + 1

    @property
    def timeout_seconds(self) -> float:
        return (self.timeout_ms or DEFAULT_TIMEOUT_MS) / 1000.0


@dataclass(frozen=True)
class AgentAST:
    """
    Parsed agent definition. Treated as immutable; transformations build
    new values with ``dataclasses.replace``.
    """
    id: str = ""
    version: Optional[int] = None
    description: Optional[str] = None
    trigger: Optional[Trigger] = None
    secrets: Dict[str, SecretDef] = field(default_factory=dict)
    vars: Dict[str, VarDef] = field(default_factory=dict)
    steps: Tuple[Step, ...] = ()
    outputs: Dict[str, str] = field(default_factory=dict)

    def step(self, step_id: str) -> Optional[Step]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert AST to a JSON-friendly dictionary."""
        def clean(obj: Any) -> Dict[str, Any]:
            data = {}
            for key, value in obj.__dict__.items():
                if isinstance(value, Enum):
                    value = value.value
                if value is None or value == {}:
                    continue
                data[key] = value
            return data

        return {
            "id": self.id,
            "version": self.version,
            "description": self.description,
            "trigger": clean(self.trigger) if self.trigger else None,
            "secrets": {name: clean(s) for name, s in self.secrets.items()},
            "vars": {name: clean(v) for name, v in self.vars.items()},
            "steps": [clean(step) for step in self.steps],
            "outputs": dict(self.outputs),
        }


class ValidationLevel(str, Enum):
    """Validation severity levels."""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class Diagnostic:
    """A single problem found while parsing or validating."""
    level: ValidationLevel
    message: str
    location: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    suggestion: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "message": self.message,
            "location": self.location,
            "line": self.line,
            "column": self.column,
            "suggestion": self.suggestion,
        }

    def __str__(self) -> str:
        where = ""
        if self.line is not None:
            where = f"line {self.line}"
            if self.column is not None:
                where += f", column {self.column}"
            where += ": "
        elif self.location:
            where = f"{self.location}: "
        return f"{where}{self.message}"


class ValidationResult:
    """Result of parsing/validation with collected diagnostics."""

    def __init__(self, issues: Optional[List[Diagnostic]] = None):
        self.issues: List[Diagnostic] = list(issues or [])

    def add_issue(
        self,
        level: ValidationLevel,
        message: str,
        location: Optional[str] = None,
        suggestion: Optional[str] = None,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ) -> Diagnostic:
        issue = Diagnostic(level, message, location, line, column, suggestion)
        self.issues.append(issue)
        return issue

    def add_error(self, message: str, location: Optional[str] = None, **kwargs) -> Diagnostic:
        return self.add_issue(ValidationLevel.ERROR, message, location, **kwargs)

    def add_warning(self, message: str, location: Optional[str] = None, **kwargs) -> Diagnostic:
        return self.add_issue(ValidationLevel.WARNING, message, location, **kwargs)

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        self.issues.extend(other.issues)
        return self

    @property
    def errors(self) -> List[Diagnostic]:
        return [issue for issue in self.issues if issue.level == ValidationLevel.ERROR]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [issue for issue in self.issues if issue.level == ValidationLevel.WARNING]

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        """Convert validation result to dictionary."""
        return {
            "valid": self.valid,
            "errors": [issue.to_dict() for issue in self.errors],
            "warnings": [issue.to_dict() for issue in self.warnings],
            "summary": {
                "errors": len(self.errors),
                "warnings": len(self.warnings),
                "info": len(self.issues) - len(self.errors) - len(self.warnings),
            },
        }


@dataclass
class ParseResult:
    """AST paired with the diagnostics collected while producing it."""
    ast: AgentAST
    validation: ValidationResult
    dialect: Dialect


class ExecutionPhase(str, Enum):
    """Lifecycle of one orchestrator invocation."""
    INITIALIZING = "initializing"
    RESOLVING_VARIABLES = "resolving_variables"
    EXECUTING_STEPS = "executing_steps"
    RESOLVING_OUTPUTS = "resolving_outputs"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ExecutionContext:
    """
    Per-invocation runtime state. Never shared between invocations.
    """
    input: Dict[str, Any] = field(default_factory=dict)
    vars: Dict[str, Any] = field(default_factory=dict)
    state: Dict[str, Any] = field(default_factory=dict)
    secrets: Dict[str, Optional[str]] = field(default_factory=dict)
    options: Dict[str, Any] = field(default_factory=dict)
    phase: ExecutionPhase = ExecutionPhase.INITIALIZING
    current_step: Optional[str] = None
    skipped: List[str] = field(default_factory=list)
    attempts: Dict[str, int] = field(default_factory=dict)


@dataclass
class ExecutionResult:
    """Resolved outputs plus the context they were produced in."""
    outputs: Dict[str, Any]
    context: ExecutionContext


class AgentScriptError(Exception):
    """Base class for all AgentScript errors."""


class DSLSyntaxError(AgentScriptError):
    """Syntax error with source position and an optional fix hint."""

    def __init__(
        self,
        message: str,
        line_number: Optional[int] = None,
        position: Optional[int] = None,
        context: Optional[str] = None,
        suggestion: Optional[str] = None,
    ):
        self.message = message
        self.line_number = line_number
        self.position = position
        self.context = context
        self.suggestion = suggestion
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format error message with context."""
        if self.line_number is not None and self.position is not None:
            text = f"Syntax error at line {self.line_number}, column {self.position}: {self.message}"
        elif self.line_number is not None:
            text = f"Syntax error at line {self.line_number}: {self.message}"
        else:
            text = f"Syntax error: {self.message}"
        if self.suggestion:
            text += f" ({self.suggestion})"
        return text


class ParseError(DSLSyntaxError):
    """Raised by the tokenizer for input it cannot lex."""


class DSLValidationError(AgentScriptError):
    """Raised when an AST that failed validation is asked to execute."""

    def __init__(self, message: str, result: Optional[ValidationResult] = None):
        self.result = result or ValidationResult()
        details = "; ".join(str(issue) for issue in self.result.errors)
        super().__init__(f"{message}: {details}" if details else message)


class ConfigurationError(AgentScriptError):
    """Missing required secret, variable or provider; raised before any step runs."""


class StepExecutionError(AgentScriptError):
    """A step failed after exhausting its attempts."""

    def __init__(self, step_id: str, message: str, attempts: int = 1, cause: Optional[BaseException] = None):
        self.step_id = step_id
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"Step '{step_id}' failed after {attempts} attempt(s): {message}")


class ExecutionCancelledError(AgentScriptError):
    """The caller cancelled an in-flight execution."""
