"""Layered variable resolution for a generation request."""

from __future__ import annotations

import copy
import hashlib
import json
import logging
import os
import platform
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from jsonschema.exceptions import SchemaError
from pydantic import BaseModel, Field

from ..core.cache import TTLCache
from ..core.errors import VariableValidationError, Violation
from ..core.models import VariableContext, VariableSchema
from ..core.schema import JsonSchemaValidator, SchemaValidator, variable_json_schema
from .casing import camel_case, kebab_case, pascal_case, snake_case
from .interpolation import Interpolator
from .processor import CoercionError, coerce_value, load_environment, load_system
from .secrets import SECRET_ENV_PREFIX, NullSecretLoader, SecretLoader

logger = logging.getLogger(__name__)

Transformer = Callable[[Any, VariableContext], Any]


class ResolverConfig(BaseModel):
    """Resolver-wide defaults shared by every request."""

    defaults: dict[str, Any] = Field(default_factory=dict)
    environments: dict[str, dict[str, Any]] = Field(
        default_factory=dict, description="Per-environment variable sets"
    )
    schemas: list[VariableSchema] = Field(default_factory=list)
    enable_cache: bool = True
    cache_ttl: float = Field(default=300.0, description="Seconds")
    cache_size: int | None = 256
    enable_interpolation: bool = True


class ResolutionOptions(BaseModel):
    """Per-call knobs for ``VariableResolver.resolve``."""

    environment: str | None = None
    overrides: dict[str, Any] = Field(default_factory=dict)
    schemas: list[VariableSchema] = Field(default_factory=list)
    include_env: bool = True
    include_system: bool = True
    skip_validation: bool = False
    skip_cache: bool = False


def compute_variables(
    user: Mapping[str, Any], now: datetime | None = None
) -> dict[str, Any]:
    """Derive engine-provided values. These never go through validation."""
    now = now or datetime.now()
    computed: dict[str, Any] = {
        "timestamp": now.isoformat(),
        "date": now.strftime("%Y-%m-%d"),
        "time": now.strftime("%H:%M:%S"),
        "year": now.year,
        "month": now.month,
        "day": now.day,
        "platform": platform.system().lower(),
        "arch": platform.machine(),
        "python_version": platform.python_version(),
        "cwd": os.getcwd(),
    }

    project_name = user.get("project_name", user.get("projectName"))
    if isinstance(project_name, str) and project_name:
        computed["project_name_kebab"] = kebab_case(project_name)
        computed["project_name_camel"] = camel_case(project_name)
        computed["project_name_pascal"] = pascal_case(project_name)
        computed["project_name_snake"] = snake_case(project_name)

    return computed


class VariableResolver:
    """Builds a ``VariableContext`` from environment, system, user and computed layers.

    Args:
        config: Resolver-wide defaults and schemas
        schema_validator: Validation capability; a JSON Schema one is created if omitted
        secret_loader: Strategy for the secrets layer (empty by default)
        transformers: Per-variable callables applied after validation
        cache: Result cache; created from ``config`` when omitted
        clock: Wall clock used for computed timestamps
    """

    def __init__(
        self,
        config: ResolverConfig | None = None,
        schema_validator: SchemaValidator | None = None,
        secret_loader: SecretLoader | None = None,
        transformers: Mapping[str, Transformer] | None = None,
        cache: TTLCache[VariableContext] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or ResolverConfig()
        self.schema_validator = schema_validator or JsonSchemaValidator()
        self.secret_loader = secret_loader or NullSecretLoader()
        self.transformers = dict(transformers or {})
        self.cache = cache if cache is not None else TTLCache(
            self.config.cache_ttl, self.config.cache_size, name="variables"
        )
        self._clock = clock or datetime.now
        self._resolutions = 0

    def resolve(
        self,
        user_vars: Mapping[str, Any] | None = None,
        options: ResolutionOptions | None = None,
    ) -> VariableContext:
        """Resolve all variable layers for one request.

        Raises:
            VariableValidationError: Listing every variable that failed its schema
        """
        user_vars = dict(user_vars or {})
        options = options or ResolutionOptions()
        use_cache = self.config.enable_cache and not options.skip_cache

        cache_key = self._cache_key(user_vars, options)
        if use_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.debug(f"Variable context cache hit: {cache_key[:12]}")
                return cached.model_copy(deep=True)

        context = VariableContext()
        if options.include_env:
            context.env = load_environment(exclude_prefixes=(SECRET_ENV_PREFIX,))
        if options.include_system:
            context.system = load_system()

        merged: dict[str, Any] = {}
        if options.environment:
            env_config = self.config.environments.get(options.environment)
            if env_config is None:
                logger.debug(f"No configuration for environment '{options.environment}'")
            merged.update(copy.deepcopy(env_config or {}))
        merged.update(copy.deepcopy(self.config.defaults))
        merged.update(user_vars)
        merged.update(options.overrides)

        schemas = self._schemas_for(options)
        if options.skip_validation:
            context.user = merged
        else:
            context.user = self.validate_variables(merged, schemas)

        self._apply_transformers(context)
        context.computed = compute_variables(context.user, self._clock())

        if self.config.enable_interpolation:
            self._interpolate(context)

        context.secrets = dict(self.secret_loader.load(context))

        self._resolutions += 1
        if use_cache:
            self.cache.set(cache_key, context.model_copy(deep=True))

        logger.debug(
            f"Resolved {len(context.user)} user and {len(context.computed)} computed variables"
        )
        return context

    def validate_variables(
        self, variables: Mapping[str, Any], schemas: list[VariableSchema]
    ) -> dict[str, Any]:
        """Coerce and validate variables against their declared schemas.

        Variables without a schema pass through unchanged. Declared defaults
        fill missing values.

        Raises:
            VariableValidationError: When one or more variables are invalid
        """
        result = dict(variables)
        violations: list[Violation] = []

        for schema in schemas:
            name = schema.name
            if result.get(name) is None:
                if schema.has_default and schema.default is not None:
                    result[name] = copy.deepcopy(schema.default)
                elif schema.required:
                    violations.append(
                        Violation(
                            variable=name,
                            message="Required variable is missing",
                            code="required",
                        )
                    )
                    continue
                else:
                    continue

            try:
                value = coerce_value(result[name], schema.type)
            except CoercionError as exc:
                violations.append(Violation(variable=name, message=str(exc), code="type"))
                continue

            for violation in self._check_schema(schema, value):
                violations.append(
                    Violation(variable=name, message=violation.message, code=violation.code)
                )
            result[name] = value

        if violations:
            raise VariableValidationError(violations)
        return result

    def clear_cache(self) -> None:
        self.cache.clear()

    def statistics(self) -> dict[str, Any]:
        stats = self.cache.stats()
        return {
            "resolutions": self._resolutions,
            "cache_size": stats.size,
            "cache_hits": stats.hits,
            "cache_misses": stats.misses,
            "cache_hit_rate": stats.hit_rate,
            "transformers": sorted(self.transformers),
        }

    def _schemas_for(self, options: ResolutionOptions) -> list[VariableSchema]:
        by_name: dict[str, VariableSchema] = {}
        for schema in [*self.config.schemas, *options.schemas]:
            if schema.name:
                by_name[schema.name] = schema
        return list(by_name.values())

    def _check_schema(self, schema: VariableSchema, value: Any) -> list[Violation]:
        json_schema = variable_json_schema(schema)
        if not json_schema:
            return []
        digest = hashlib.sha256(
            json.dumps(json_schema, sort_keys=True, default=str).encode()
        ).hexdigest()
        schema_id = f"variable:{digest[:16]}"
        if not self.schema_validator.has(schema_id):
            try:
                self.schema_validator.register(schema_id, json_schema)
            except SchemaError as exc:
                return [Violation(variable=schema.name, message=exc.message, code="schema")]
        return self.schema_validator.validate(schema_id, value)

    def _apply_transformers(self, context: VariableContext) -> None:
        for name, transformer in self.transformers.items():
            if name not in context.user:
                continue
            try:
                context.user[name] = transformer(context.user[name], context)
            except Exception as exc:
                message = f"Transformer for '{name}' failed: {exc}"
                logger.warning(message)
                context.warnings.append(message)

    def _interpolate(self, context: VariableContext) -> None:
        interpolator = Interpolator(context.flatten(), context.layers())
        context.user = interpolator.interpolate_mapping(context.user)
        context.computed = interpolator.interpolate_mapping(context.computed)

    @staticmethod
    def _cache_key(user_vars: Mapping[str, Any], options: ResolutionOptions) -> str:
        payload = json.dumps(
            {"user_vars": user_vars, "options": options.model_dump(mode="json")},
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(payload.encode()).hexdigest()
