"""
Workflow Generator

Uses an LLM to generate ComfyUI workflows from natural language descriptions,
and to validate or debug existing ones.

Generation paths:
- generate_stream: streaming backend (NDJSON), live thoughts via callbacks
- generate_local: backend's non-streaming endpoint, bare workflow back
- generate_with_gemini: Gemini in JSON response mode

All model output goes through the same extractor/repairer pair.
"""

import json
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from providers.base import ChatMessage, GenerationRequest
from providers.gemini_provider import GeminiProvider
from providers.local_llm_provider import LocalLlmProvider
from providers.workflow_backend_provider import WorkflowBackendProvider

from .errors import ConfigurationError, StructuralError
from .payload_extractor import CORRECTION_ANCHORS, extract_json_object
from .payload_repair import WorkflowFormat, classify_workflow, default_requirements
from .prompts import build_system_instruction, debugger_instruction, validator_instruction
from .stream_consumer import GenerationResult, StreamConsumer, build_result

logger = logging.getLogger("workflow_generator")

LOCAL_BACKEND_THOUGHTS = (
    "Generated by local Python backend (non-streaming). "
    "Node selection and reasoning happened on the server."
)


def validate_workflow(workflow: Any, expected_format: Optional[WorkflowFormat] = None) -> Tuple[bool, List[str]]:
    """Validate a workflow structure. Returns (is_valid, errors)."""
    errors = []

    if not isinstance(workflow, dict):
        return False, ["Workflow must be a dictionary"]

    actual = classify_workflow(workflow)
    if expected_format is not None and expected_format is not WorkflowFormat.UNKNOWN and actual is not expected_format:
        errors.append(f"Expected {expected_format.value} format, got {actual.value}")

    if actual is WorkflowFormat.GRAPH:
        if not isinstance(workflow.get("nodes"), list):
            errors.append("'nodes' must be an array")
        if not isinstance(workflow.get("links"), list):
            errors.append("'links' must be an array")

        node_ids = set()
        for i, node in enumerate(workflow.get("nodes") or []):
            if not isinstance(node, dict):
                errors.append(f"Node {i} is not a dictionary")
                continue
            if "id" not in node:
                errors.append(f"Node {i} missing 'id'")
            else:
                node_ids.add(node["id"])
            if "type" not in node:
                errors.append(f"Node {i} missing 'type'")

        # [link_id, from_node, from_slot, to_node, to_slot, type]
        for link in workflow.get("links") or []:
            if not isinstance(link, list) or len(link) < 5:
                errors.append(f"Malformed link: {link}")
                continue
            for endpoint in (link[1], link[3]):
                if endpoint not in node_ids:
                    errors.append(f"Link {link[0]} references unknown node {endpoint}")

    elif actual is WorkflowFormat.API:
        for node_id, node in workflow.items():
            if not isinstance(node, dict):
                errors.append(f"Node {node_id} is not a dictionary")
            elif "class_type" not in node:
                errors.append(f"Node {node_id} missing 'class_type'")

    else:
        errors.append("Workflow is neither graph format (nodes/links) nor API format (numeric node ids)")

    return len(errors) == 0, errors


class WorkflowGenerator:
    """
    Request orchestrator.

    Builds prompts, picks the provider, and hands model output to the
    extraction pipeline. Providers are created from settings unless given.
    """

    def __init__(
        self,
        settings,
        backend: Optional[WorkflowBackendProvider] = None,
        local_llm: Optional[LocalLlmProvider] = None,
        gemini: Optional[GeminiProvider] = None,
    ):
        self.settings = settings
        self.backend = backend or WorkflowBackendProvider(
            base_url=settings.get("providers.workflow_backend.base_url"),
            retries=settings.get("providers.workflow_backend.retries", 3),
        )
        self.local_llm = local_llm or LocalLlmProvider(
            base_url=settings.get("providers.local_llm.base_url"),
            model=settings.get("providers.local_llm.model", ""),
        )
        self.gemini = gemini or GeminiProvider(
            api_key=settings.get("providers.gemini.api_key", ""),
            model=settings.get("providers.gemini.model", "gemini-2.5-flash"),
        )

    async def close(self):
        await self.backend.close()
        await self.local_llm.close()
        await self.gemini.close()

    def _system_instruction(
        self,
        workflow_format: WorkflowFormat,
        inventory: Optional[Dict[str, Any]],
        image_name: Optional[str],
        rag_context: str,
        template: Optional[str],
    ) -> str:
        return build_system_instruction(
            template=template or self.settings.get("generation.system_prompt_template") or None,
            workflow_format=workflow_format,
            inventory=inventory if inventory is not None else self.settings.get("generation.inventory"),
            image_name=image_name,
            rag_context=rag_context,
        )

    def default_format(self) -> WorkflowFormat:
        value = self.settings.get("generation.format", "graph")
        try:
            return WorkflowFormat(value)
        except ValueError:
            raise ConfigurationError(f"Unknown workflow format in settings: {value!r}")

    async def generate_stream(
        self,
        description: str,
        inventory: Optional[Dict[str, Any]] = None,
        image_name: Optional[str] = None,
        workflow_format: Optional[WorkflowFormat] = None,
        rag_context: str = "",
        system_instruction_template: Optional[str] = None,
        on_thoughts: Optional[Callable[[str], None]] = None,
        on_status: Optional[Callable[[str], None]] = None,
    ) -> GenerationResult:
        """Generate a workflow over the streaming backend."""
        workflow_format = workflow_format or self.default_format()
        model = self.settings.get("providers.ollama.model")
        ollama_url = self.settings.get("providers.ollama.base_url")
        if not model:
            raise ConfigurationError("No model configured (providers.ollama.model).")

        request = GenerationRequest(
            prompt=description,
            model=model,
            system_prompt=self._system_instruction(
                workflow_format, inventory, image_name, rag_context, system_instruction_template
            ),
            ollama_url=ollama_url,
        )

        logger.info("=" * 60)
        logger.info(f"Generating workflow ({workflow_format.value}) with {model}")
        logger.info(f"Description: {description}")

        consumer = StreamConsumer(on_thoughts=on_thoughts, on_status=on_status)
        result = await consumer.consume(self.backend.open_stream(request))
        self._log_validation(result.workflow, workflow_format)
        return result

    async def generate_local(self, description: str) -> GenerationResult:
        """Non-streaming generation; the backend picks nodes server-side."""
        workflow = await self.backend.generate_workflow(description)
        if not isinstance(workflow, dict) or classify_workflow(workflow) is WorkflowFormat.UNKNOWN:
            raise StructuralError("Backend response is not a workflow object.")
        return GenerationResult(
            thoughts=LOCAL_BACKEND_THOUGHTS,
            workflow=workflow,
            requirements=default_requirements(),
        )

    async def generate_with_gemini(
        self,
        description: str,
        inventory: Optional[Dict[str, Any]] = None,
        image_name: Optional[str] = None,
        workflow_format: Optional[WorkflowFormat] = None,
        rag_context: str = "",
        system_instruction_template: Optional[str] = None,
    ) -> GenerationResult:
        """Generate a workflow with Gemini."""
        workflow_format = workflow_format or self.default_format()
        text = await self.gemini.generate(
            contents=description,
            system_instruction=self._system_instruction(
                workflow_format, inventory, image_name, rag_context, system_instruction_template
            ),
            json_mode=True,
        )
        result = build_result(text)
        self._log_validation(result.workflow, workflow_format)
        return result

    async def generate(self, description: str, **kwargs) -> GenerationResult:
        """Generate with the provider selected in settings."""
        provider = self.settings.get("providers.active", "local")
        if provider == "gemini":
            kwargs.pop("on_thoughts", None)
            kwargs.pop("on_status", None)
            return await self.generate_with_gemini(description, **kwargs)
        if provider == "local":
            return await self.generate_stream(description, **kwargs)
        raise ConfigurationError(f"Unknown provider in settings: {provider!r}")

    def _log_validation(self, workflow: Dict[str, Any], workflow_format: WorkflowFormat):
        is_valid, errors = validate_workflow(workflow, workflow_format)
        if is_valid:
            logger.info("Generated workflow passed structural validation")
        else:
            logger.warning(f"Generated workflow has {len(errors)} structural issue(s): {errors[:5]}")

    async def _ask_for_correction(self, system_prompt: str, user_content: str,
                                  log_key: str) -> Dict[str, Any]:
        content = await self.local_llm.chat(
            [
                ChatMessage(role="system", content=system_prompt),
                ChatMessage(role="user", content=user_content),
            ],
            temperature=self.settings.get("providers.local_llm.temperature", 0.2),
        )
        parsed, _ = extract_json_object(content, CORRECTION_ANCHORS)
        if not isinstance(parsed, dict) or log_key not in parsed or not parsed.get("correctedWorkflow"):
            raise StructuralError(f"Reply is missing '{log_key}' or 'correctedWorkflow'.")
        return parsed

    async def validate_and_correct(self, workflow: Dict[str, Any]) -> Dict[str, Any]:
        """Ask the LLM to validate a workflow. Returns {validationLog, correctedWorkflow}."""
        workflow_format = classify_workflow(workflow)
        label = "Graph" if workflow_format is WorkflowFormat.GRAPH else "API"
        return await self._ask_for_correction(
            validator_instruction(workflow_format),
            f"Please validate and correct the following ComfyUI workflow ({label} format):\n\n"
            f"{json.dumps(workflow, indent=2)}",
            "validationLog",
        )

    async def debug_and_correct(self, workflow: Dict[str, Any], error_message: str) -> Dict[str, Any]:
        """Ask the LLM to fix a workflow ComfyUI rejected. Returns {correctionLog, correctedWorkflow}."""
        workflow_format = classify_workflow(workflow)
        return await self._ask_for_correction(
            debugger_instruction(workflow_format),
            json.dumps({"workflow": workflow, "errorMessage": error_message}, indent=2),
            "correctionLog",
        )
