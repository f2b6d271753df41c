"""Secret loading strategies.

Secrets are resolved after every other layer and are never merged into the
variables handed to templates; they stay on ``VariableContext.secrets``.
"""

from __future__ import annotations

import logging
import os
from typing import Protocol

from ..core.models import VariableContext

logger = logging.getLogger(__name__)

SECRET_ENV_PREFIX = "SCAFFOLDR_SECRET_"


class SecretLoader(Protocol):
    def load(self, context: VariableContext) -> dict[str, str]: ...


class NullSecretLoader:
    """Default loader: no secrets."""

    def load(self, context: VariableContext) -> dict[str, str]:
        return {}


class EnvironmentSecretLoader:
    """Collect secrets from prefixed environment variables.

    ``SCAFFOLDR_SECRET_DB_PASSWORD=...`` becomes ``secrets["db_password"]``.
    """

    def __init__(self, prefix: str = SECRET_ENV_PREFIX) -> None:
        self.prefix = prefix

    def load(self, context: VariableContext) -> dict[str, str]:
        secrets = {
            key[len(self.prefix) :].lower(): value
            for key, value in os.environ.items()
            if key.startswith(self.prefix) and len(key) > len(self.prefix)
        }
        logger.debug(f"Loaded secret names from environment: {sorted(secrets)}")
        return secrets
