"""
System instructions for workflow generation, validation and debugging.

The generation template defines the output contract the extractor relies on:
a THOUGHTS: section, then the ###JSON_START### separator, then raw JSON.
"""

import json
from typing import Any, Dict, Optional

from .payload_extractor import JSON_SEPARATOR, THOUGHTS_MARKER
from .payload_repair import WorkflowFormat

RAG_PLACEHOLDER = "{{RAG_CONTEXT_PLACEHOLDER}}"
IMAGE_PLACEHOLDER = "{{IMAGE_CONTEXT_PLACEHOLDER}}"
INVENTORY_PLACEHOLDER = "{{SYSTEM_INVENTORY_PLACEHOLDER}}"
FORMAT_PLACEHOLDER = "{{FORMAT_INSTRUCTION_PLACEHOLDER}}"


SYSTEM_INSTRUCTION_TEMPLATE = f'''You are an expert assistant specializing in ComfyUI workflows.
Your task is to generate a valid ComfyUI workflow JSON based on the user's request.

{RAG_PLACEHOLDER}
{IMAGE_PLACEHOLDER}
{INVENTORY_PLACEHOLDER}

{FORMAT_PLACEHOLDER}

**CRITICAL OUTPUT FORMAT:**
You must output your response in two distinct parts separated by a specific marker.

Part 1: The Reasoning (Chain of Thought)
Start immediately with your thought process. Explain your node selection, parameter choices, and connection logic.
Start this section with "{THOUGHTS_MARKER}".

Part 2: The JSON
Once your reasoning is complete, insert the separator string: {JSON_SEPARATOR}
Immediately after the separator, output the VALID JSON object. Do not wrap the JSON in markdown code blocks (no ```json). Just the raw JSON string.

The JSON object has exactly two top-level keys:
- "workflow": the ComfyUI workflow
- "requirements": {{"custom_nodes": [{{"name", "url", "install_instructions"}}], "models": [{{"name", "url", "model_type", "install_path"}}]}}

Example Structure:
{THOUGHTS_MARKER}
The user wants a simple SDXL workflow. I will use a Load Checkpoint node...
...more thinking...
{JSON_SEPARATOR}
{{
  "workflow": {{ ... }},
  "requirements": {{ "custom_nodes": [], "models": [] }}
}}
'''

GRAPH_FORMAT_INSTRUCTION = '''
**QUALITY ASSURANCE (GRAPH FORMAT):**
1. Ensure the JSON structure is valid.
2. Ensure all 'links' matches the nodes' input/output links.
3. Validate node types and widgets against standard ComfyUI specifications.
'''

API_FORMAT_INSTRUCTION = '''
**QUALITY ASSURANCE (API FORMAT):**
1. Use the API format (Node IDs as keys).
2. Ensure correct class_type usage.
3. Ensure connections use ["ID", slot_index] syntax.
'''

SYSTEM_INSTRUCTION_VALIDATOR = '''You are a ComfyUI Workflow Analyzer.
Validate the workflow JSON (graph format) and correct every problem you find.
Return ONLY JSON of the form:
{"validationLog": [{"check": str, "status": "passed"|"corrected"|"failed", "details": str}], "correctedWorkflow": {...}}
'''

SYSTEM_INSTRUCTION_API_VALIDATOR = '''You are a ComfyUI API Validator.
Validate the workflow JSON (API format: node ids as keys) and correct every problem you find.
Return ONLY JSON of the form:
{"validationLog": [{"check": str, "status": "passed"|"corrected"|"failed", "details": str}], "correctedWorkflow": {...}}
'''

SYSTEM_INSTRUCTION_DEBUGGER = '''You are a ComfyUI Debugger.
You receive a workflow (graph format) and the error ComfyUI reported. Fix the JSON based on the error.
Return ONLY JSON of the form:
{"correctionLog": [{"analysis": str, "action": str, "reasoning": str}], "correctedWorkflow": {...}}
'''

SYSTEM_INSTRUCTION_API_DEBUGGER = '''You are a ComfyUI API Debugger.
You receive a workflow (API format) and the error ComfyUI reported. Fix the JSON based on the error.
Return ONLY JSON of the form:
{"correctionLog": [{"analysis": str, "action": str, "reasoning": str}], "correctedWorkflow": {...}}
'''


def _rag_block(rag_context: str) -> str:
    if not rag_context or not rag_context.strip():
        return ""
    return (
        "\n**RAG-CONTEXT:**\n"
        "The following information was retrieved from a local knowledge base "
        "to give additional context for the user's request.\n"
        f"```\n{rag_context.strip()}\n```\n"
    )


def _image_block(image_name: Optional[str]) -> str:
    if not image_name:
        return ""
    return (
        "\n**USER-PROVIDED IMAGE CONTEXT:**\n"
        f"The user has uploaded an image: `{image_name}`.\n"
        'You MUST incorporate this image into the workflow by creating a "LoadImage" node. '
        f'The "image" widget value MUST be "{image_name}".\n'
    )


def _inventory_block(inventory: Optional[Dict[str, Any]]) -> str:
    if not inventory:
        return "No specific inventory provided. Use common, plausible model names."
    return f"\n```json\n{json.dumps(inventory, indent=2)}\n```\n"


def build_system_instruction(
    template: Optional[str] = None,
    workflow_format: WorkflowFormat = WorkflowFormat.GRAPH,
    inventory: Optional[Dict[str, Any]] = None,
    image_name: Optional[str] = None,
    rag_context: str = "",
) -> str:
    """Fill the generation template's placeholders."""
    format_instruction = (
        API_FORMAT_INSTRUCTION if workflow_format is WorkflowFormat.API
        else GRAPH_FORMAT_INSTRUCTION
    )
    return (
        (template or SYSTEM_INSTRUCTION_TEMPLATE)
        .replace(RAG_PLACEHOLDER, _rag_block(rag_context))
        .replace(IMAGE_PLACEHOLDER, _image_block(image_name))
        .replace(INVENTORY_PLACEHOLDER, _inventory_block(inventory))
        .replace(FORMAT_PLACEHOLDER, format_instruction)
    )


def validator_instruction(workflow_format: WorkflowFormat) -> str:
    if workflow_format is WorkflowFormat.GRAPH:
        return SYSTEM_INSTRUCTION_VALIDATOR
    return SYSTEM_INSTRUCTION_API_VALIDATOR


def debugger_instruction(workflow_format: WorkflowFormat) -> str:
    if workflow_format is WorkflowFormat.GRAPH:
        return SYSTEM_INSTRUCTION_DEBUGGER
    return SYSTEM_INSTRUCTION_API_DEBUGGER
