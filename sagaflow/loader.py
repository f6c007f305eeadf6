"""
Load workflow and saga definitions from YAML or JSON files.

    kind: workflow            # or "saga"; inferred when omitted
    name: order-flow
    version: "1.0.0"
    triggers:
      - event_type: order.created
        step: reserve
        filters: {"data.total": {gt: 0}}
    steps:
      - id: reserve
        config: {action: reserve_stock, region: "${REGION:-eu}"}
        next: [charge]

String values support ${VAR}, ${VAR:-default} and ${VAR:?error} environment
substitution (a `.env` file in the working directory is loaded first).
"""

import json
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import yaml

from sagaflow.core.env import get_env
from sagaflow.core.exceptions import ValidationFailedError
from sagaflow.core.models import SagaDefinition, WorkflowDefinition

Definition = WorkflowDefinition | SagaDefinition

_KINDS = ("workflow", "saga")


def detect_kind(data: Mapping[str, Any]) -> str:
    kind = data.get("kind")
    if kind is not None:
        if kind not in _KINDS:
            msg = f"Unknown definition kind '{kind}' (expected workflow or saga)"
            raise ValidationFailedError([msg])
        return kind
    if "triggers" in data:
        return "workflow"
    if "compensation_policy" in data or "compensationPolicy" in data:
        return "saga"
    steps = data.get("steps") or []
    if steps and all(isinstance(s, Mapping) and "action" in s for s in steps):
        return "saga"
    return "workflow"


def parse_definition(data: Mapping[str, Any]) -> Definition:
    """Build a definition from an already-parsed document."""
    if not isinstance(data, Mapping):
        msg = f"Definition must be a mapping, got {type(data).__name__}"
        raise ValidationFailedError([msg])
    if detect_kind(data) == "saga":
        return SagaDefinition.from_dict(data)
    return WorkflowDefinition.from_dict(data)


def read_document(path: str | Path, substitute_env: bool = True) -> dict[str, Any]:
    """Parse a YAML (.yaml/.yml) or JSON file into a mapping."""
    path = Path(path)
    if not path.exists():
        msg = f"Definition file not found: {path}"
        raise FileNotFoundError(msg)

    text = path.read_text()
    try:
        if path.suffix == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        msg = f"Cannot parse {path.name}: {e}"
        raise ValidationFailedError([msg]) from e

    if not data:
        msg = f"{path.name} is empty"
        raise ValidationFailedError([msg])

    if substitute_env:
        env = get_env()
        env.load()
        try:
            data = env.substitute_value(data)
        except ValueError as e:
            raise ValidationFailedError([f"{path.name}: {e}"]) from e
    return data


def load_definition(path: str | Path, substitute_env: bool = True) -> Definition:
    """
    Load one definition file.

    Raises:
        FileNotFoundError: The file does not exist
        ValidationFailedError: The file cannot be parsed or has bad field values
    """
    return parse_definition(read_document(path, substitute_env))


def load_definitions(paths: Iterable[str | Path], substitute_env: bool = True) -> list[Definition]:
    """Load several files; directories contribute their *.yaml, *.yml and *.json files."""
    definitions: list[Definition] = []
    for entry in paths:
        entry = Path(entry)
        if entry.is_dir():
            files = sorted(
                p for p in entry.iterdir() if p.suffix in (".yaml", ".yml", ".json")
            )
        else:
            files = [entry]
        definitions.extend(load_definition(f, substitute_env) for f in files)
    return definitions
