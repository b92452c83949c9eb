#!/usr/bin/env python3
"""
ComfyArchitect Launcher

Modes:
  server    Start the FastAPI generation backend (proxies Ollama).
  generate  Generate one workflow from the command line, printing the
            model's thoughts live, and write the workflow JSON.
"""

import os
import sys
import json
import asyncio
import logging
import argparse

# Ensure we're using the right Python path
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, BASE_DIR)


def run_server(host: str = "127.0.0.1", port: int = 8000, reload: bool = False):
    """Run the FastAPI server."""
    from backend.server import run

    print(f"""
    ============================================================
                         ComfyArchitect
               ComfyUI Workflow Generation Backend
    ============================================================
      Backend:  http://{host}:{port}
      API Docs: http://{host}:{port}/docs
    ============================================================
    """)

    run(host=host, port=port, reload=reload)


class LivePrinter:
    """Prints the growing thoughts text as deltas, and status lines."""

    def __init__(self):
        self._shown = ""

    def thoughts(self, text: str):
        if text.startswith(self._shown):
            sys.stdout.write(text[len(self._shown):])
        else:
            sys.stdout.write("\n" + text)
        sys.stdout.flush()
        self._shown = text

    def status(self, text: str):
        print(f"\n[status] {text}", file=sys.stderr)


async def generate_once(description: str, workflow_format: str = None, output: str = None) -> int:
    from backend.errors import WorkflowGenerationError
    from backend.payload_repair import WorkflowFormat
    from backend.server import configure_logging
    from backend.workflow_generator import WorkflowGenerator
    from settings import SettingsManager

    settings = SettingsManager()
    configure_logging(settings)
    generator = WorkflowGenerator(settings)
    printer = LivePrinter()

    try:
        result = await generator.generate(
            description,
            workflow_format=WorkflowFormat(workflow_format) if workflow_format else None,
            on_thoughts=printer.thoughts,
            on_status=printer.status,
        )
    except WorkflowGenerationError as e:
        print(f"\nGeneration failed: {e}", file=sys.stderr)
        return 1
    finally:
        await generator.close()

    text = json.dumps(result.workflow, indent=2)
    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(text)
        print(f"\nWorkflow ({result.format.value} format) written to {output}")
    else:
        print("\n" + text)

    missing_nodes = result.requirements.get("custom_nodes") or []
    missing_models = result.requirements.get("models") or []
    if missing_nodes or missing_models:
        print(f"Requirements: {len(missing_nodes)} custom node(s), {len(missing_models)} model(s)")
        for item in missing_nodes + missing_models:
            print(f"  - {item.get('name', item) if isinstance(item, dict) else item}")
    return 0


def main():
    parser = argparse.ArgumentParser(description="ComfyArchitect Launcher")
    parser.add_argument(
        "--mode",
        choices=["server", "generate"],
        default="server",
        help="Run mode: server (API backend), generate (one workflow from the command line)"
    )
    parser.add_argument("description", nargs="?", help="Workflow description (generate mode)")
    parser.add_argument("--format", choices=["graph", "api"], help="Workflow format (generate mode)")
    parser.add_argument("--output", "-o", help="Write the workflow JSON to this file (generate mode)")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload (dev mode)")

    args = parser.parse_args()

    if args.mode == "server":
        run_server(args.host, args.port, args.reload)
        return

    if not args.description:
        parser.error("generate mode needs a workflow description")
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    sys.exit(asyncio.run(generate_once(args.description, args.format, args.output)))


if __name__ == "__main__":
    main()
