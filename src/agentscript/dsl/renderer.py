"""
Template rendering for step fields and outputs.
"""

import json
import os
from typing import Any

from loguru import logger

from .types import ExecutionContext
from .validator import REFERENCE_PATTERN


FALSY_STRINGS = {"", "false", "0"}

MISSING = object()


def is_truthy(value: Any) -> bool:
    """Truthiness of a rendered ``when`` condition, judged on its text form."""
    if value is None:
        return False
    return str(value).strip().lower() not in FALSY_STRINGS


def lookup_path(root: Any, path: list[str]) -> Any:
    """Follow ``path`` through nested dicts and lists; ``MISSING`` when any hop fails."""
    current = root
    for part in path:
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return MISSING
    return current


class TemplateRenderer:
    """
    Resolves ``{name}`` and ``{name.path}`` placeholders against an
    ExecutionContext. Unresolved placeholders are left in place.
    """

    def resolve(self, reference: str, context: ExecutionContext) -> Any:
        """
        Look a reference up in saved state, variables, raw input, secrets
        and finally ``env.`` paths. First match wins.

        Returns:
            The value, or ``MISSING`` when nothing matches
        """
        root, *rest = reference.split(".")

        for scope in (context.state, context.vars):
            if root in scope:
                return lookup_path(scope[root], rest)

        if root == "input" and rest:
            value = lookup_path(context.input, rest)
            if value is not MISSING:
                return value
        if root in context.input:
            return lookup_path(context.input[root], rest)
        if root in context.secrets and not rest:
            return context.secrets[root]
        if root == "env" and len(rest) == 1:
            return os.environ.get(rest[0], MISSING)
        return MISSING

    def render(self, template: Any, context: ExecutionContext) -> Any:
        """
        Render a template string.

        A template that is exactly one placeholder yields the raw value
        (dicts and lists survive); otherwise values are stringified into
        the surrounding text.
        """
        if not isinstance(template, str):
            return template

        whole = REFERENCE_PATTERN.fullmatch(template)
        if whole:
            value = self.resolve(whole.group(1), context)
            return template if value is MISSING else value

        def substitute(match):
            value = self.resolve(match.group(1), context)
            if value is MISSING:
                logger.debug(f"Unresolved template reference '{match.group(0)}'")
                return match.group(0)
            return self.stringify(value)

        return REFERENCE_PATTERN.sub(substitute, template)

    def render_string(self, template: Any, context: ExecutionContext) -> str:
        value = self.render(template, context)
        return value if isinstance(value, str) else self.stringify(value)

    def render_object(self, obj: Any, context: ExecutionContext) -> Any:
        """Render every string inside nested dicts and lists."""
        if isinstance(obj, str):
            return self.render(obj, context)
        if isinstance(obj, dict):
            return {key: self.render_object(value, context) for key, value in obj.items()}
        if isinstance(obj, (list, tuple)):
            return [self.render_object(item, context) for item in obj]
        return obj

    @staticmethod
    def stringify(value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, (dict, list)):
            return json.dumps(value, ensure_ascii=False)
        return str(value)
