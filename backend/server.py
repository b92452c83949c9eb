"""
ComfyArchitect Generation Backend

FastAPI server providing:
- NDJSON streaming workflow generation (proxying Ollama)
- Non-streaming workflow generation with server-side extraction
- Health check
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from providers.ollama_provider import OllamaProvider
from settings.settings_manager import SettingsManager
from backend.middleware.debug_logger import DebugLoggerMiddleware, init_debug_logger
from backend.routes import generation

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'

logger = logging.getLogger("ComfyArchitect")


def configure_logging(settings: SettingsManager):
    logging.basicConfig(
        level=getattr(logging, str(settings.get("logging.level", "INFO")).upper(), logging.INFO),
        format=LOG_FORMAT,
    )


def create_app(
    settings: Optional[SettingsManager] = None,
    ollama: Optional[OllamaProvider] = None,
) -> FastAPI:
    """Build the app. Settings and provider can be injected (tests)."""
    settings = settings or SettingsManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        logger.info("Starting ComfyArchitect backend...")
        log_dir = settings.get("server.debug_log_dir")
        if log_dir:
            path = init_debug_logger(log_dir)
            logger.info(f"Request debug log: {path}")

        app.state.settings = settings
        app.state.ollama = ollama or OllamaProvider(
            base_url=settings.get("providers.ollama.base_url"),
            keep_alive=settings.get("providers.ollama.keep_alive", "5m"),
            temperature=settings.get("providers.ollama.temperature", 0.2),
        )
        yield
        logger.info("Shutting down...")
        await app.state.ollama.close()

    app = FastAPI(
        title="ComfyArchitect",
        description="Natural-language to ComfyUI workflow generation backend",
        version="1.0.0",
        lifespan=lifespan,
    )

    # The browser client runs on another origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(DebugLoggerMiddleware)
    app.include_router(generation.router, tags=["generation"])

    return app


def run(settings: Optional[SettingsManager] = None, host: Optional[str] = None,
        port: Optional[int] = None, reload: bool = False):
    """Run the server."""
    import uvicorn
    settings = settings or SettingsManager()
    configure_logging(settings)
    host = host or settings.get("server.host", "127.0.0.1")
    port = port or settings.get("server.port", 8000)

    if reload:
        uvicorn.run("backend.server:create_app", factory=True, host=host, port=port,
                    reload=True, log_level="info")
    else:
        uvicorn.run(create_app(settings), host=host, port=port, log_level="info")


if __name__ == "__main__":
    run()
