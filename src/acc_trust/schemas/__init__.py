# SPDX-License-Identifier: MPL-2.0
"""JSON schemas for the documents acc publishes."""

from __future__ import annotations

import json
from functools import lru_cache
from importlib.resources import files
from typing import Any, Dict

import jsonschema

from acc_trust.core.exceptions import SchemaValidationError

ATTESTATION_SCHEMA = "attestation-v0.1.schema.json"
TRUST_STATUS_SCHEMA = "trust-status-v0.2.schema.json"


@lru_cache(maxsize=None)
def load_schema(name: str) -> Dict[str, Any]:
    """Load a bundled schema by file name."""
    return json.loads(files(__name__).joinpath(name).read_text(encoding="utf-8"))


def validate_document(document: Dict[str, Any], name: str) -> None:
    """Validate ``document`` against the bundled schema ``name``.

    Raises:
        SchemaValidationError: If the document does not conform.
    """
    try:
        jsonschema.validate(instance=document, schema=load_schema(name))
    except jsonschema.ValidationError as e:
        raise SchemaValidationError(
            f"document does not match {name}: {e.message}",
            details={"path": list(e.absolute_path)},
        ) from e
