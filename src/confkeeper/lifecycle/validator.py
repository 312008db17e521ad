"""Schema validation for configuration documents.

validate_config() is the single commit gate: nothing becomes the live
document, whether migrated or restored, without passing it. It is pure and
never raises for malformed input; every problem becomes a violation string of
the form ``"<dotted.path>: <message>"``.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from confkeeper.lifecycle.schema import ConfigDocument

logger = logging.getLogger(__name__)

__all__ = [
    "PROVIDER_REQUIRED_FIELDS",
    "ValidationResult",
    "format_validation_errors",
    "validate_config",
]

# Nested fields a provider cannot run without, keyed by provider name
PROVIDER_REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "claude": ("model",),
    "lmstudio": ("endpoint", "model"),
    "cloudflare": ("accountId", "model"),
}


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a schema check.

    Attributes:
        valid: True iff errors is empty.
        errors: Violation descriptions in check order.

    """

    valid: bool
    errors: list[str] = field(default_factory=list)


def _format_loc(loc: tuple[int | str, ...]) -> str:
    return ".".join(str(part) for part in loc) if loc else "(root)"


def _schema_errors(doc: Any) -> list[str]:
    try:
        ConfigDocument.model_validate(doc)
    except ValidationError as e:
        return [f"{_format_loc(err['loc'])}: {err['msg']}" for err in e.errors()]
    return []


def _provider_errors(doc: Any) -> list[str]:
    """Check the fields the selected provider requires.

    Only reports fields that are absent or empty; a present value of the wrong
    type is already reported by the schema check.
    """
    if not isinstance(doc, Mapping):
        return []
    llm = doc.get("llm")
    if not isinstance(llm, Mapping):
        return []
    provider = llm.get("provider")
    if not isinstance(provider, str) or provider not in PROVIDER_REQUIRED_FIELDS:
        return []

    section = llm.get(provider)
    if section is not None and not isinstance(section, Mapping):
        # Wrong section type is a schema error already
        return []

    errors = []
    for name in PROVIDER_REQUIRED_FIELDS[provider]:
        value = section.get(name) if section else None
        if value is None or value == "":
            errors.append(f"llm.{provider}.{name}: Required when provider is '{provider}'")
    return errors


def validate_config(doc: Any) -> ValidationResult:
    """Validate a candidate configuration document.

    Checks, accumulating every failure:
    1. Required top-level fields and their primitive types (version, server,
       mikrotik, llm), plus optional sections when present.
    2. Provider-specific requirements (e.g. claude needs llm.claude.model).

    Args:
        doc: Parsed document of any shape (live, candidate or snapshot).

    Returns:
        ValidationResult; valid iff no violations were found.

    """
    errors = _schema_errors(doc) + _provider_errors(doc)
    if errors:
        logger.debug("Configuration validation failed with %d error(s)", len(errors))
    return ValidationResult(valid=not errors, errors=errors)


def format_validation_errors(errors: list[str]) -> str:
    """Format validation errors for display as a numbered list."""
    if not errors:
        return "No errors"
    return "\n".join(f"{index}. {err}" for index, err in enumerate(errors, 1))
