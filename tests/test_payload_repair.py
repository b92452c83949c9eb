"""
Tests for workflow classification and structural repair.
"""

import sys
import os
import copy
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from backend.errors import StructuralError
from backend.payload_repair import (
    CanonicalPayload,
    WorkflowFormat,
    classify_workflow,
    default_requirements,
    repair_payload,
)


GRAPH = {"last_node_id": 2, "nodes": [{"id": 1, "type": "CheckpointLoaderSimple"}], "links": []}
API = {"1": {"class_type": "CheckpointLoaderSimple", "inputs": {}}, "2": {"class_type": "KSampler", "inputs": {}}}


# ---------------------------------------------------------------------------
# Test: classify_workflow
# ---------------------------------------------------------------------------

class TestClassifyWorkflow(unittest.TestCase):

    def test_graph(self):
        self.assertIs(classify_workflow(GRAPH), WorkflowFormat.GRAPH)

    def test_graph_links_only(self):
        self.assertIs(classify_workflow({"links": []}), WorkflowFormat.GRAPH)

    def test_api(self):
        self.assertIs(classify_workflow(API), WorkflowFormat.API)

    def test_nodes_key_wins_over_numeric_keys(self):
        self.assertIs(classify_workflow({"nodes": [], "1": {}}), WorkflowFormat.GRAPH)

    def test_unknown(self):
        self.assertIs(classify_workflow({"foo": 1}), WorkflowFormat.UNKNOWN)
        self.assertIs(classify_workflow({}), WorkflowFormat.UNKNOWN)

    def test_non_finite_keys_are_not_node_ids(self):
        for key in ("nan", "NaN", "inf", "-Infinity"):
            self.assertIs(classify_workflow({key: {"class_type": "KSampler"}}), WorkflowFormat.UNKNOWN, key)
        self.assertIs(classify_workflow({" 12 ": {}}), WorkflowFormat.API)

    def test_non_dict(self):
        self.assertIs(classify_workflow([1, 2]), WorkflowFormat.UNKNOWN)
        self.assertIs(classify_workflow(None), WorkflowFormat.UNKNOWN)


# ---------------------------------------------------------------------------
# Test: repair_payload
# ---------------------------------------------------------------------------

class TestRepairPayload(unittest.TestCase):

    def test_canonical_unchanged(self):
        requirements = {"custom_nodes": [{"name": "Impact Pack"}], "models": []}
        payload = repair_payload({"workflow": GRAPH, "requirements": requirements})
        self.assertEqual(payload.workflow, GRAPH)
        self.assertEqual(payload.requirements, requirements)

    def test_bare_graph_wrapped(self):
        payload = repair_payload({"nodes": [], "links": []})
        self.assertEqual(
            payload.to_dict(),
            {"workflow": {"nodes": [], "links": []}, "requirements": {"custom_nodes": [], "models": []}},
        )

    def test_repair_is_idempotent(self):
        once = repair_payload({"nodes": [], "links": []}).to_dict()
        twice = repair_payload(once).to_dict()
        self.assertEqual(once, twice)

    def test_bare_api_wrapped(self):
        payload = repair_payload(API)
        self.assertEqual(payload.workflow, API)
        self.assertEqual(payload.requirements, default_requirements())

    def test_missing_requirements_defaulted(self):
        payload = repair_payload({"workflow": API})
        self.assertEqual(payload.requirements, {"custom_nodes": [], "models": []})

    def test_partial_requirements_completed(self):
        payload = repair_payload({"workflow": API, "requirements": {"models": [{"name": "sdxl.safetensors"}]}})
        self.assertEqual(payload.requirements["custom_nodes"], [])
        self.assertEqual(payload.requirements["models"], [{"name": "sdxl.safetensors"}])

    def test_malformed_requirements_replaced(self):
        payload = repair_payload({"workflow": API, "requirements": "none"})
        self.assertEqual(payload.requirements, default_requirements())

    def test_input_not_mutated(self):
        parsed = {"workflow": GRAPH, "requirements": {"models": []}}
        snapshot = copy.deepcopy(parsed)
        payload = repair_payload(parsed)
        payload.workflow["nodes"].append({"id": 99})
        self.assertEqual(parsed, snapshot)

    def test_no_workflow_is_structural_error(self):
        with self.assertRaises(StructuralError) as ctx:
            repair_payload({"requirements": {"custom_nodes": [], "models": []}})
        self.assertEqual(ctx.exception.phase, "structural")

    def test_empty_workflow_kept(self):
        requirements = {"custom_nodes": [], "models": []}
        payload = repair_payload({"workflow": {}, "requirements": requirements})
        self.assertEqual(payload.workflow, {})
        self.assertEqual(payload.requirements, requirements)

    def test_non_object_workflow_is_structural_error(self):
        with self.assertRaises(StructuralError):
            repair_payload({"workflow": "see above"})

    def test_model_error_message_surfaced(self):
        with self.assertRaises(StructuralError) as ctx:
            repair_payload({"error": "Unknown node type requested"})
        self.assertIn("Unknown node type requested", str(ctx.exception))

    def test_non_object_is_structural_error(self):
        with self.assertRaises(StructuralError):
            repair_payload([GRAPH])

    def test_canonical_payload_defaults(self):
        self.assertEqual(CanonicalPayload(workflow=API).requirements, default_requirements())


if __name__ == "__main__":
    unittest.main()
