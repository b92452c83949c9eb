"""
Generation Routes

The server side of the NDJSON generation transport:

    POST /v1/generate_workflow_stream   status/token records, one per line
    POST /api/generate-workflow         bare workflow, extraction done here
    GET  /api/health
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from backend.errors import ExtractionError, PayloadParseError, StructuralError, WorkflowGenerationError
from backend.prompts import build_system_instruction
from backend.stream_consumer import STREAM_ERROR_PREFIX, build_result

logger = logging.getLogger("routes.generation")
router = APIRouter()

NDJSON_MEDIA_TYPE = "application/x-ndjson"


class StreamGenerationRequest(BaseModel):
    """Body of POST /v1/generate_workflow_stream."""
    prompt: str
    model: str
    system_prompt: str
    ollama_url: Optional[str] = None


class WorkflowGenerationRequest(BaseModel):
    """Body of POST /api/generate-workflow."""
    prompt: str
    model: Optional[str] = None
    system_prompt: Optional[str] = None


def ndjson_record(kind: str, data: str) -> str:
    return json.dumps({"type": kind, "data": data}, ensure_ascii=False) + "\n"


@router.post("/v1/generate_workflow_stream")
async def generate_workflow_stream(request: Request, body: StreamGenerationRequest):
    """Stream one generation as status/token records."""
    ollama = request.app.state.ollama

    async def generate():
        yield ndjson_record("status", f"Sending request to {body.model}...")
        token_count = 0
        try:
            async for token in ollama.generate_stream(
                body.model, body.prompt, body.system_prompt, base_url=body.ollama_url
            ):
                if token_count == 0:
                    yield ndjson_record("status", "Receiving response...")
                token_count += 1
                yield ndjson_record("token", token)
        except WorkflowGenerationError as e:
            logger.error(f"Stream generation failed: {e}")
            yield ndjson_record("status", f"{STREAM_ERROR_PREFIX}{e.detail}")
            return

        logger.info(f"Stream generation complete: {token_count} tokens from {body.model}")
        yield ndjson_record("status", "Generation complete.")

    return StreamingResponse(generate(), media_type=NDJSON_MEDIA_TYPE)


@router.post("/api/generate-workflow")
async def generate_workflow(request: Request, body: WorkflowGenerationRequest):
    """Generate to completion and return only the workflow."""
    settings = request.app.state.settings
    ollama = request.app.state.ollama

    model = body.model or settings.get("providers.ollama.model")
    system_prompt = body.system_prompt or build_system_instruction(
        template=settings.get("generation.system_prompt_template") or None,
        inventory=settings.get("generation.inventory"),
    )

    try:
        text = await ollama.generate(model, body.prompt, system_prompt)
    except WorkflowGenerationError as e:
        logger.error(f"Upstream generation failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    try:
        result = build_result(text)
    except (ExtractionError, PayloadParseError, StructuralError) as e:
        logger.error(f"Could not recover a workflow: {e.detail[:300]}")
        raise HTTPException(status_code=422, detail=str(e))

    logger.info(f"Workflow generated ({result.format.value} format)")
    return result.workflow


@router.get("/api/health")
async def health(request: Request):
    """Backend and Ollama reachability."""
    ollama_status = await request.app.state.ollama.health_check()
    return {
        "status": "healthy",
        "ollama": ollama_status,
    }
