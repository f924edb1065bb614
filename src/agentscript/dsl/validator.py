"""
AgentScript validation engine.
Structural checks, per-kind required fields, numeric ranges and
cross-reference analysis between variables, secrets and step results.
"""

import re
from typing import Any, Iterable, List, Set

from loguru import logger

from .types import AgentAST, Step, StepKind, ValidationResult


# Only identifier paths count as references, so JSON braces in prompts stay text.
REFERENCE_PATTERN = re.compile(r"\{\s*([A-Za-z_][\w-]*(?:\.[\w-]+)*)\s*\}")
AGENT_ID_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*$")

HTTP_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE"}
MAX_RETRIES = 10
MAX_TIMEOUT_MS = 600000

# Fields each step kind cannot run without; a tuple means "any of".
REQUIRED_FIELDS = {
    StepKind.LLM: ["model", "prompt"],
    StepKind.HTTP: ["url"],
    StepKind.FUNCTION: ["function"],
    StepKind.VISION: ["model", "input"],
    StepKind.AUDIO: ["model", ("input", "text")],
    StepKind.VECTORDB: ["operation", "backend"],
    StepKind.FINETUNE: ["model", "operation"],
}

TEMPLATE_FIELDS = ("prompt", "input", "text", "url", "query", "when", "headers", "body", "args")


def extract_references(value: Any) -> List[str]:
    """
    Collect ``{name}`` references from a string or any nested dict/list.

    Returns:
        Reference expressions in order of appearance, e.g. ``["r", "input.user"]``
    """
    found: List[str] = []
    if isinstance(value, str):
        found.extend(match.strip() for match in REFERENCE_PATTERN.findall(value))
    elif isinstance(value, dict):
        for item in value.values():
            found.extend(extract_references(item))
    elif isinstance(value, (list, tuple)):
        for item in value:
            found.extend(extract_references(item))
    return found


def reference_root(reference: str) -> str:
    return reference.split(".", 1)[0]


def step_references(step: Step) -> List[str]:
    refs: List[str] = []
    for name in TEMPLATE_FIELDS:
        refs.extend(extract_references(getattr(step, name)))
    return refs


class AgentValidator:
    """
    Semantic validator for AgentAST values.

    Every problem is collected; validation never stops at the first error.
    """

    def validate(self, ast: AgentAST) -> ValidationResult:
        """
        Validate an AST.

        Args:
            ast: Parsed agent

        Returns:
            ValidationResult with errors and warnings
        """
        result = ValidationResult()

        self._validate_header(ast, result)
        self._validate_trigger(ast, result)
        self._validate_declarations(ast, result)
        self._validate_steps(ast, result)
        self._validate_references(ast, result)

        if result.valid:
            logger.debug(f"Agent '{ast.id}' validated with {len(result.warnings)} warnings")
        else:
            logger.debug(f"Agent '{ast.id}' has {len(result.errors)} validation errors")
        return result

    def _validate_header(self, ast: AgentAST, result: ValidationResult) -> None:
        if not ast.id:
            result.add_error("Agent id is required", "id", suggestion="Write '@agent my-agent v1'")
        elif not AGENT_ID_PATTERN.match(ast.id):
            result.add_error(
                f"Agent id '{ast.id}' must start with a letter and contain only letters, digits, '_' or '-'",
                "id",
            )
        if ast.version is None or ast.version < 1:
            result.add_error("Agent version must be a positive integer", "version")

    def _validate_trigger(self, ast: AgentAST, result: ValidationResult) -> None:
        trigger = ast.trigger
        if trigger is None:
            result.add_error("Agent must declare a trigger", "trigger",
                             suggestion="Add 'trigger http POST /path'")
            return
        if not trigger.type:
            result.add_error("Trigger type is required", "trigger.type")
            return
        if trigger.type == "http":
            if trigger.method is None:
                result.add_error("HTTP trigger needs a method", "trigger.method")
            elif trigger.method not in HTTP_METHODS:
                result.add_error(f"Unsupported HTTP method '{trigger.method}'", "trigger.method",
                                 suggestion="Use one of: " + ", ".join(sorted(HTTP_METHODS)))
            if not trigger.path:
                result.add_error("HTTP trigger needs a path", "trigger.path")
            elif not trigger.path.startswith("/"):
                result.add_error(f"Trigger path '{trigger.path}' must start with '/'", "trigger.path")

    def _validate_declarations(self, ast: AgentAST, result: ValidationResult) -> None:
        for name, secret in ast.secrets.items():
            if not secret.reference:
                result.add_error(f"Secret '{name}' has an empty reference", f"secrets.{name}")
        for name, var in ast.vars.items():
            if not var.source and var.kind.value != "literal":
                result.add_error(f"Variable '{name}' has an empty {var.kind.value} path", f"vars.{name}")
            if var.required and var.default is not None:
                result.add_warning(f"Variable '{name}' is required, its default is never used",
                                   f"vars.{name}")

    def _validate_steps(self, ast: AgentAST, result: ValidationResult) -> None:
        if not ast.steps:
            result.add_warning("Agent has no steps", "steps")

        seen: Set[str] = set()
        saves: Set[str] = set()
        for index, step in enumerate(ast.steps):
            location = f"steps[{index}]"
            if step.id in seen:
                result.add_error(f"Duplicate step id '{step.id}'", location)
            seen.add(step.id)

            if step.save:
                if step.save in saves:
                    result.add_warning(f"Step '{step.id}' overwrites saved value '{step.save}'",
                                       f"{location}.save")
                saves.add(step.save)

            if step.kind is None:
                result.add_error(f"Step '{step.id}' is missing 'kind'", f"{location}.kind",
                                 suggestion="Use one of: " + ", ".join(k.value for k in StepKind))
                continue

            for required in REQUIRED_FIELDS[step.kind]:
                options = required if isinstance(required, tuple) else (required,)
                if not any(getattr(step, name) not in (None, "") for name in options):
                    result.add_error(
                        f"{step.kind.value} step '{step.id}' requires " + " or ".join(f"'{name}'" for name in options),
                        f"{location}.{options[0]}",
                    )

            if step.method is not None and step.method not in HTTP_METHODS:
                result.add_error(f"Unsupported HTTP method '{step.method}' in step '{step.id}'",
                                 f"{location}.method")

            if step.retries is not None:
                if step.retries < 0:
                    result.add_error(f"Step '{step.id}' retries must not be negative", f"{location}.retries")
                elif step.retries > MAX_RETRIES:
                    result.add_warning(f"Step '{step.id}' retries {step.retries} exceeds {MAX_RETRIES}",
                                       f"{location}.retries")
            if step.timeout_ms is not None:
                if step.timeout_ms <= 0:
                    result.add_error(f"Step '{step.id}' timeout_ms must be positive", f"{location}.timeout_ms")
                elif step.timeout_ms > MAX_TIMEOUT_MS:
                    result.add_warning(f"Step '{step.id}' timeout_ms {step.timeout_ms} exceeds {MAX_TIMEOUT_MS}",
                                       f"{location}.timeout_ms")
            if step.top_k is not None and step.top_k < 1:
                result.add_error(f"Step '{step.id}' top_k must be at least 1", f"{location}.top_k")

    def _validate_references(self, ast: AgentAST, result: ValidationResult) -> None:
        declared = set(ast.vars) | set(ast.secrets)
        saved_by = {step.save: index for index, step in enumerate(ast.steps) if step.save}
        available: Set[str] = set()
        used: Set[str] = set()

        for index, step in enumerate(ast.steps):
            for reference in step_references(step):
                root = reference_root(reference)
                used.add(root)
                self._check_reference(reference, root, declared, available, saved_by,
                                      f"steps[{index}]", result)
            if step.save:
                available.add(step.save)

        for key, template in ast.outputs.items():
            for reference in extract_references(template):
                root = reference_root(reference)
                used.add(root)
                self._check_reference(reference, root, declared, available, saved_by,
                                      f"outputs.{key}", result)

        for index, step in enumerate(ast.steps):
            if step.save and step.save not in used and step.save not in declared:
                result.add_warning(f"Saved value '{step.save}' of step '{step.id}' is never used",
                                   f"steps[{index}].save")

    @staticmethod
    def _check_reference(
        reference: str,
        root: str,
        declared: Iterable[str],
        available: Set[str],
        saved_by: dict,
        location: str,
        result: ValidationResult,
    ) -> None:
        if reference.startswith(("input.", "env.")) or root in declared or root in available:
            return
        if root in saved_by:
            result.add_error(
                f"Forward reference '{{{reference}}}': '{root}' is not saved until step {saved_by[root] + 1}",
                location,
                suggestion="Move the step that saves it before this one",
            )
            return
        result.add_error(f"Unknown reference '{{{reference}}}'", location,
                         suggestion="Declare it with 'var', as a secret, or save it in an earlier step")


def validate(ast: AgentAST) -> ValidationResult:
    return AgentValidator().validate(ast)
