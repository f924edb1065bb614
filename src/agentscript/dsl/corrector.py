"""
Auto-correction and serialization.

The corrector fills missing step fields with configured defaults without
touching anything the author wrote; the serializer renders an AST back to
terse source that parses to the same AST.
"""

import dataclasses
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from loguru import logger

from ..config import CorrectorConfig
from .tokenizer import quote_string
from .types import AgentAST, Step, StepKind, VarDef, VarKind


@dataclass
class CorrectionResult:
    ast: AgentAST
    changes: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.changes)


class AgentCorrector:
    """Fills defaults into steps. Applying it twice changes nothing the second time."""

    def __init__(self, config: Optional[CorrectorConfig] = None):
        self.config = config or CorrectorConfig()

    def correct(self, ast: AgentAST) -> CorrectionResult:
        """
        Apply defaults to every step.

        Args:
            ast: AST to correct; left untouched

        Returns:
            CorrectionResult with the new AST and one message per change
        """
        changes: List[str] = []
        steps = tuple(self._correct_step(step, changes) for step in ast.steps)
        corrected = dataclasses.replace(ast, steps=steps) if changes else ast

        if changes:
            logger.info(f"Corrected agent '{ast.id}': {len(changes)} changes")
        return CorrectionResult(corrected, changes)

    def _correct_step(self, step: Step, changes: List[str]) -> Step:
        config = self.config
        updates: Dict[str, Any] = {}

        if step.kind == StepKind.LLM:
            if not step.provider:
                updates["provider"] = config.default_provider
                changes.append(f"Added default provider '{config.default_provider}' to step '{step.id}'")
            if not step.save:
                updates["save"] = f"{step.id}_result"
                changes.append(f"Added save field '{step.id}_result' to step '{step.id}'")

        if step.kind == StepKind.HTTP:
            if not step.headers:
                updates["headers"] = dict(config.default_http_headers)
                changes.append(f"Added default headers to HTTP step '{step.id}'")
            if not step.method:
                updates["method"] = config.default_http_method
                changes.append(f"Added default method '{config.default_http_method}' to HTTP step '{step.id}'")

        if step.retries is None:
            updates["retries"] = config.default_retries
            changes.append(f"Added default retries ({config.default_retries}) to step '{step.id}'")
        if step.timeout_ms is None:
            updates["timeout_ms"] = config.default_timeout_ms
            changes.append(f"Added default timeout_ms ({config.default_timeout_ms}) to step '{step.id}'")

        return dataclasses.replace(step, **updates) if updates else step


def _value(value: str) -> str:
    """Bare text where the parser reads it back unchanged, a quoted literal otherwise."""
    if (
        not value
        or value != value.strip()
        or value[0] in "\"':"
        or "\n" in value
        or "\r" in value
    ):
        return quote_string(value)
    return value


def _block_prompt(prompt: str) -> bool:
    lines = prompt.split("\n")
    return (
        len(lines) > 1
        and '"""' not in prompt
        and "\r" not in prompt
        and bool(lines[0].strip()) and bool(lines[-1].strip())
        and not prompt[0].isspace()
        and all(line == line.rstrip() for line in lines)
    )


def _var_source(var: VarDef) -> str:
    if var.kind == VarKind.LITERAL:
        text = quote_string(var.source)
    else:
        text = f"{var.kind.value}.{var.source}"
    if var.required:
        text += " required"
    if var.default is not None:
        text += f" default {quote_string(var.default)}"
    return text


STEP_FIELD_ORDER = (
    "kind", "provider", "model", "method", "url", "headers", "body", "operation", "backend",
    "collection", "query", "top_k", "function", "args", "input", "text", "prompt", "when",
    "save", "retries", "timeout_ms",
)


def _step_lines(step: Step) -> List[str]:
    lines = [f"step {step.id}:"]
    for name in STEP_FIELD_ORDER:
        value = getattr(step, name)
        if value is None:
            continue
        if name == "kind":
            text = value.value
        elif name in ("headers", "args"):
            text = json.dumps(value, ensure_ascii=False)
        elif name == "body":
            text = quote_string(value) if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
        elif name in ("retries", "timeout_ms", "top_k"):
            text = str(value)
        elif name == "prompt" and _block_prompt(value):
            lines.append('  prompt """')
            lines.extend(f"    {line}" if line else "" for line in value.split("\n"))
            lines.append('  """')
            continue
        else:
            text = _value(value)
        lines.append(f"  {name} {text}")
    for key, value in step.extra.items():
        lines.append(f"  {key} {_value(value)}")
    return lines


def serialize(ast: AgentAST) -> str:
    """
    Render an AST as terse AgentScript source.

    Returns:
        Source text such that parsing it yields an equal AST
    """
    header = f"@agent {ast.id}"
    if ast.version is not None:
        header += f" v{ast.version}"
    lines = [header]

    if ast.description is not None:
        lines.append(f"description {_value(ast.description)}")
    if ast.trigger is not None:
        parts = [ast.trigger.type, ast.trigger.method, ast.trigger.path]
        lines.append("trigger " + " ".join(part for part in parts if part))
    for name, secret in ast.secrets.items():
        lines.append(f"secret {name}={secret.kind.value}:{_value(secret.reference)}")
    for name, var in ast.vars.items():
        lines.append(f"var {name} = {_var_source(var)}")

    for step in ast.steps:
        lines.append("")
        lines.extend(_step_lines(step))

    if ast.outputs:
        lines.append("")
    for key, template in ast.outputs.items():
        lines.append(f"output {key} = {quote_string(template)}")
    lines.append("@end")
    return "\n".join(lines) + "\n"
