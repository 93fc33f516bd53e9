from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError
from jsonschema import validate as jsonschema_validate

from walkthroughs.models import WalkthroughDefinition
from walkthroughs.services.errors import InvalidRequest

DEFINITION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "id": {"type": ["string", "integer"]},
        "title": {"type": "string"},
        "services": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {"name": {"type": "string", "minLength": 1}, "config": {"type": "object"}},
                "required": ["name"],
            },
        },
        "templates": {"type": "array", "items": {"type": "object"}},
    },
    "required": ["id"],
}


def parse_definition(document: Any) -> WalkthroughDefinition:
    try:
        jsonschema_validate(instance=document, schema=DEFINITION_SCHEMA)
    except ValidationError as exc:
        raise InvalidRequest(f"Walkthrough definition is invalid: {exc.message}") from exc
    data = dict(document)
    data["id"] = str(data["id"])
    return WalkthroughDefinition.model_validate(data)


def load_definition(path: Path) -> WalkthroughDefinition:
    """Read a walkthrough definition from a YAML or JSON file."""
    try:
        content = path.read_text()
    except OSError as exc:
        raise InvalidRequest(f"Unable to read {path}: {exc}") from exc
    try:
        document = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise InvalidRequest(f"Invalid YAML in {path}: {exc}") from exc
    return parse_definition(document)
