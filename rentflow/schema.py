"""JSON Schema validation for RentFlow documents.

Schemas live in `rentflow/schemas/` and are registered by `$id` so that
cross-schema `$ref`s resolve without network access. Validators are cached.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, List

from jsonschema import Draft202012Validator
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from rentflow.core import SCHEMAS_DIR, load_json

LEASE_TERMS_SCHEMA = SCHEMAS_DIR / "lease-terms.schema.json"


@lru_cache(maxsize=1)
def _schema_registry(schemas_dir: Path = SCHEMAS_DIR) -> Registry:
    """Registry of every bundled schema, keyed by `$id`."""
    resources = []
    for schema_path in sorted(schemas_dir.glob("*.schema.json")):
        schema = load_json(schema_path)
        schema_id = schema.get("$id") or f"https://schemas.rentflow.dev/{schema_path.name}"
        resources.append((schema_id, Resource.from_contents(schema, default_specification=DRAFT202012)))
    return Registry().with_resources(resources)


@lru_cache(maxsize=None)
def schema_validator(schema_path: Path) -> Draft202012Validator:
    """Create a validator for a schema file."""
    schema = load_json(schema_path)
    Draft202012Validator.check_schema(schema)
    return Draft202012Validator(schema, registry=_schema_registry())


def validate_against_schema(obj: Any, schema_path: Path = LEASE_TERMS_SCHEMA) -> List[str]:
    """Validate an object. Returns error messages, empty if valid."""
    validator = schema_validator(Path(schema_path))
    return [
        f"{error.json_path}: {error.message}"
        for error in sorted(validator.iter_errors(obj), key=lambda e: e.json_path)
    ]
