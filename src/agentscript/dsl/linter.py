"""
Style and safety linter for AgentScript.

Each rule is a plain function ``rule(ast) -> iterable of LintIssue``. Rules
run in isolation: one that raises is logged and skipped so the rest still
report.
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from loguru import logger

from .types import AgentAST, SecretKind, StepKind, ValidationLevel
from .validator import extract_references, reference_root, step_references


KEY_PATTERNS = [
    re.compile(r"^sk-[a-zA-Z0-9]{40,}$"),
    re.compile(r"^hf_[a-zA-Z0-9]{40,}$"),
    re.compile(r"^AIza[a-zA-Z0-9_-]{35}$"),
    re.compile(r"^[a-zA-Z0-9_-]{32,}$"),
]


@dataclass(frozen=True)
class LintIssue:
    rule: str
    severity: ValidationLevel
    message: str
    location: Optional[str] = None
    suggestion: Optional[str] = None
    auto_fixable: bool = False


LintRule = Callable[[AgentAST], Iterable[LintIssue]]


def secret_literal(ast: AgentAST) -> Iterable[LintIssue]:
    for name, secret in ast.secrets.items():
        if secret.kind == SecretKind.LITERAL and any(p.match(secret.reference) for p in KEY_PATTERNS):
            yield LintIssue(
                "secret-literal", ValidationLevel.ERROR,
                f"Secret '{name}' appears to contain a literal API key. Use env:VAR_NAME instead.",
                f"secrets.{name}",
                suggestion=f"Replace the literal value with env:{name}",
            )


def llm_model_missing(ast: AgentAST) -> Iterable[LintIssue]:
    for step in ast.steps:
        if step.kind == StepKind.LLM and not step.model:
            yield LintIssue(
                "llm-model-missing", ValidationLevel.ERROR,
                f"LLM step '{step.id}' is missing required 'model' field",
                f"steps.{step.id}.model",
                suggestion='Add a model field, e.g. "model gpt-4o"',
            )


def provider_missing(ast: AgentAST) -> Iterable[LintIssue]:
    for step in ast.steps:
        if step.kind == StepKind.LLM and not step.provider:
            yield LintIssue(
                "provider-missing", ValidationLevel.WARNING,
                f"LLM step '{step.id}' should specify a provider",
                f"steps.{step.id}.provider",
                suggestion='Add a provider field, e.g. "provider openai"',
                auto_fixable=True,
            )


def llm_save_missing(ast: AgentAST) -> Iterable[LintIssue]:
    for step in ast.steps:
        if step.kind == StepKind.LLM and not step.save:
            yield LintIssue(
                "llm-save-missing", ValidationLevel.WARNING,
                f"LLM step '{step.id}' should specify 'save' to store the result",
                f"steps.{step.id}.save",
                suggestion=f'Add a save field, e.g. "save {step.id}_result"',
                auto_fixable=True,
            )


def http_url_missing(ast: AgentAST) -> Iterable[LintIssue]:
    for step in ast.steps:
        if step.kind == StepKind.HTTP and not step.url:
            yield LintIssue(
                "http-url-missing", ValidationLevel.ERROR,
                f"HTTP step '{step.id}' is missing required 'url' field",
                f"steps.{step.id}.url",
                suggestion="Add a url field with the target endpoint",
            )


def steps_required(ast: AgentAST) -> Iterable[LintIssue]:
    if not ast.steps:
        yield LintIssue("steps-required", ValidationLevel.ERROR, "At least one step is required", "steps",
                        suggestion="Add at least one step to the agent")


def outputs_required(ast: AgentAST) -> Iterable[LintIssue]:
    if not ast.outputs:
        yield LintIssue("outputs-required", ValidationLevel.ERROR, "At least one output is required", "outputs",
                        suggestion="Add an output referencing a variable or step result")


def unused_variable(ast: AgentAST) -> Iterable[LintIssue]:
    used = {reference_root(ref) for step in ast.steps for ref in step_references(step)}
    for template in ast.outputs.values():
        used.update(reference_root(ref) for ref in extract_references(template))
    for name in ast.vars:
        if name not in used:
            yield LintIssue(
                "unused-variable", ValidationLevel.WARNING,
                f"Variable '{name}' is defined but never used",
                f"vars.{name}",
                suggestion="Remove the unused variable or use it in a step",
            )


def retry_defaults(ast: AgentAST) -> Iterable[LintIssue]:
    for step in ast.steps:
        if step.retries is None:
            yield LintIssue(
                "retry-defaults", ValidationLevel.INFO,
                f"Step '{step.id}' should specify retries (default: 0)",
                f"steps.{step.id}.retries",
                suggestion='Add a retries field, e.g. "retries 3"',
                auto_fixable=True,
            )


def timeout_defaults(ast: AgentAST) -> Iterable[LintIssue]:
    for step in ast.steps:
        if step.timeout_ms is None:
            yield LintIssue(
                "timeout-defaults", ValidationLevel.INFO,
                f"Step '{step.id}' should specify timeout_ms (default: 60000)",
                f"steps.{step.id}.timeout_ms",
                suggestion='Add a timeout_ms field, e.g. "timeout_ms 60000"',
                auto_fixable=True,
            )


DEFAULT_RULES = {
    "secret-literal": secret_literal,
    "llm-model-missing": llm_model_missing,
    "provider-missing": provider_missing,
    "llm-save-missing": llm_save_missing,
    "http-url-missing": http_url_missing,
    "steps-required": steps_required,
    "outputs-required": outputs_required,
    "unused-variable": unused_variable,
    "retry-defaults": retry_defaults,
    "timeout-defaults": timeout_defaults,
}


class AgentLinter:
    """Runs a configurable set of lint rules over an AST."""

    def __init__(self, rules: Optional[dict] = None, disabled: Iterable[str] = ()):
        self.rules: Dict[str, LintRule] = dict(DEFAULT_RULES if rules is None else rules)
        for name in disabled:
            self.rules.pop(name, None)

    def register(self, name: str, rule: LintRule) -> None:
        self.rules[name] = rule

    def lint(self, ast: AgentAST) -> List[LintIssue]:
        issues: List[LintIssue] = []
        for name, rule in self.rules.items():
            try:
                issues.extend(rule(ast))
            except Exception as e:
                logger.warning(f"Linter rule '{name}' failed: {e}")
        logger.debug(f"Lint of '{ast.id}' found {len(issues)} issues")
        return issues


def lint(ast: AgentAST) -> List[LintIssue]:
    return AgentLinter().lint(ast)
