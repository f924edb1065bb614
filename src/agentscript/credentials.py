"""
Secret resolution for agent executions.

Env-kind secrets are looked up in the system keyring (when enabled) and
then the process environment; literal secrets are used as written.
"""

import os
import re
from typing import Dict, List, Optional

import keyring
from keyring.errors import KeyringError
from loguru import logger

from .config import SecretsConfig
from .dsl.types import SecretDef, SecretKind


MASK_PATTERNS = [
    (re.compile(r"sk-[a-zA-Z0-9]{40,}"), "sk-****"),
    (re.compile(r"hf_[a-zA-Z0-9]{40,}"), "hf_****"),
    (re.compile(r"AIza[a-zA-Z0-9_-]{35}"), "AIza****"),
    (re.compile(r"Bearer\s+[a-zA-Z0-9_.-]{20,}"), "Bearer ****"),
]


def mask_secret(value: Optional[str]) -> str:
    """Show only the first and last two characters of a secret."""
    if not value:
        return "<unset>"
    if len(value) <= 8:
        return "****"
    return f"{value[:2]}****{value[-2:]}"


def mask_sensitive(text: str) -> str:
    """Replace well-known credential shapes inside free text."""
    for pattern, replacement in MASK_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class SecretResolver:
    """Resolves declared secrets to their values for one execution."""

    def __init__(self, config: Optional[SecretsConfig] = None, environ: Optional[Dict[str, str]] = None):
        """
        Args:
            config: Keyring settings
            environ: Environment mapping to read (defaults to ``os.environ``)
        """
        self.config = config or SecretsConfig()
        self.environ = os.environ if environ is None else environ

    def get_credential(self, key: str) -> Optional[str]:
        """
        Retrieve a credential from the keyring with environment fallback.

        Returns:
            Credential value or None if not found
        """
        if self.config.use_keyring:
            try:
                value = keyring.get_password(self.config.keyring_service, key)
                if value:
                    logger.debug(f"Retrieved credential from keyring: {key}")
                    return value
            except KeyringError as e:
                logger.warning(f"Failed to retrieve credential {key} from keyring: {e}")

        value = self.environ.get(key)
        if value:
            logger.debug(f"Retrieved credential from environment: {key}")
            return value
        return None

    def resolve(self, secrets: Dict[str, SecretDef]) -> Dict[str, Optional[str]]:
        """
        Resolve every declared secret.

        Returns:
            Mapping of secret name to value, None where an env secret is unset
        """
        resolved: Dict[str, Optional[str]] = {}
        for name, secret in secrets.items():
            if secret.kind == SecretKind.LITERAL:
                resolved[name] = secret.reference
                continue
            value = self.get_credential(secret.reference)
            if value is None:
                logger.warning(f"Secret '{name}' not found: environment variable {secret.reference} is not set")
            else:
                logger.debug(f"Resolved secret '{name}' = {mask_secret(value)}")
            resolved[name] = value
        return resolved

    @staticmethod
    def missing(resolved: Dict[str, Optional[str]]) -> List[str]:
        return [name for name, value in resolved.items() if value is None]
