"""
Structural repair of parsed workflow payloads.

Models answer in two workflow serializations and do not always wrap them:

- graph format: {"last_node_id": ..., "nodes": [...], "links": [...], ...}
- API format:   {"1": {"class_type": ..., "inputs": {...}}, "2": ...}

Detection is structural; the caller never declares which one to expect.
"""

import copy
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from .errors import StructuralError


class WorkflowFormat(Enum):
    """Workflow serializations."""
    GRAPH = "graph"
    API = "api"
    UNKNOWN = "unknown"


def default_requirements() -> Dict[str, list]:
    return {"custom_nodes": [], "models": []}


@dataclass
class CanonicalPayload:
    """Normalized {workflow, requirements} payload."""
    workflow: Dict[str, Any]
    requirements: Dict[str, Any] = field(default_factory=default_requirements)

    def to_dict(self) -> Dict[str, Any]:
        return {"workflow": self.workflow, "requirements": self.requirements}


def _is_numeric_key(key: Any) -> bool:
    key = str(key).strip()
    if not key:
        return False
    try:
        value = float(key)
    except ValueError:
        return False
    # "nan" and "inf" parse as floats but are not node ids
    return math.isfinite(value)


def classify_workflow(obj: Any) -> WorkflowFormat:
    """
    Classify a workflow candidate. Probe order:

    1. has a "nodes" or "links" key  -> GRAPH
    2. any top-level key is numeric  -> API
    3. otherwise                     -> UNKNOWN
    """
    if not isinstance(obj, dict):
        return WorkflowFormat.UNKNOWN
    if "nodes" in obj or "links" in obj:
        return WorkflowFormat.GRAPH
    if any(_is_numeric_key(k) for k in obj):
        return WorkflowFormat.API
    return WorkflowFormat.UNKNOWN


def repair_payload(parsed: Any) -> CanonicalPayload:
    """
    Normalize a parsed payload into CanonicalPayload.

    The input is not modified. Only requirements are ever defaulted; a
    missing workflow raises StructuralError.
    """
    if not isinstance(parsed, dict):
        raise StructuralError(
            f"Expected a JSON object, got {type(parsed).__name__}."
        )

    if isinstance(parsed.get("workflow"), dict):
        workflow = parsed["workflow"]
        requirements = parsed.get("requirements")
    elif classify_workflow(parsed) is not WorkflowFormat.UNKNOWN:
        workflow = parsed
        requirements = None
    else:
        error = parsed.get("error")
        if isinstance(error, str) and error:
            raise StructuralError(f"The model could not generate a workflow: {error}")
        raise StructuralError(
            f"No workflow object found (top-level keys: {sorted(parsed.keys())})."
        )

    if isinstance(requirements, dict):
        requirements = copy.deepcopy(requirements)
        requirements.setdefault("custom_nodes", [])
        requirements.setdefault("models", [])
    else:
        requirements = default_requirements()

    return CanonicalPayload(workflow=copy.deepcopy(workflow), requirements=requirements)
