"""FastAPI application for the research pipeline with SSE support."""

import sys
from contextlib import asynccontextmanager
from typing import Annotated

import logfire
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from api.error_handlers import install_error_handlers
from api.sse_handler import create_sse_response
from api.streaming import StreamingManager
from api.task_manager import BackgroundTaskManager
from core.bootstrap import PipelineComponents, build_components
from core.config import config as global_config
from core.logging import configure_logging
from models.api_models import (
    CancelResponse,
    HistoryEntry,
    RunStatusResponse,
    StartResearchRequest,
    StartResearchResponse,
)
from models.coordination import RecursiveResearchResult
from services.research_controller import ResearchController


def build_controller(components: PipelineComponents) -> ResearchController:
    """Controller wired from the process configuration."""
    return ResearchController(
        components.agents,
        streaming=StreamingManager(heartbeat_seconds=global_config.heartbeat_seconds),
        task_manager=BackgroundTaskManager(global_config.max_concurrent_runs),
        default_config=components.pipeline_config,
        extractor=components.extractor,
        synthesizer=components.synthesizer,
        embeddings=components.embeddings,
    )


async def shutdown_controller(controller: ResearchController) -> None:
    await controller.task_manager.shutdown()
    await controller.streaming.close()


def get_controller(request: Request) -> ResearchController:
    controller = request.app.state.controller
    if controller is None:
        raise HTTPException(status_code=503, detail="Research service is starting")
    return controller


Controller = Annotated[ResearchController, Depends(get_controller)]


def create_app(controller: ResearchController | None = None) -> FastAPI:
    """Build the API.

    Args:
        controller: Pre-built controller; when omitted one is built on startup
            from the environment and torn down on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(enable_console=True)
        components: PipelineComponents | None = None
        if app.state.controller is None:
            components = build_components()
            app.state.controller = build_controller(components)
            app.state.components = components
        logfire.info(
            "Research API started",
            max_concurrent_runs=app.state.controller.task_manager.max_concurrent,
            heartbeat_seconds=app.state.controller.streaming.heartbeat_seconds,
        )
        try:
            yield
        finally:
            if components is not None:
                await shutdown_controller(app.state.controller)
                await components.aclose()
                app.state.controller = None
                app.state.components = None
            logfire.info("Research API shutdown")

    app = FastAPI(
        title="Recursive Research API",
        description="Multi-agent recursive research with live progress streaming",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.controller = controller
    app.state.components = None

    install_error_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:8000"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
        expose_headers=["*"],
    )

    @app.get("/health")
    async def health(request: Request):
        """Health check endpoint."""
        controller = request.app.state.controller
        if controller is None:
            return {"status": "starting"}
        payload = {
            "status": "healthy",
            "active_runs": controller.task_manager.active_count,
            "active_streams": controller.streaming.get_connection_count(),
        }
        components = request.app.state.components
        if components is not None and components.embeddings is not None:
            payload["embeddings"] = components.embeddings.stats()
        return payload

    @app.post("/research", response_model=StartResearchResponse, status_code=202)
    async def start_research(body: StartResearchRequest, controller: Controller):
        """Queue a research run; progress is streamed from ``stream_url``."""
        record = await controller.submit_research(body.topic, body.topic_id, body.context, body.config)
        return StartResearchResponse(
            topic_id=record.topic_id,
            status=record.state,
            queue_position=controller.task_manager.queue_position(record.topic_id),
            stream_url=f"/research/{record.topic_id}/stream",
            status_url=f"/research/{record.topic_id}",
        )

    @app.get("/research/{topic_id}", response_model=RunStatusResponse)
    async def get_research_status(topic_id: str, controller: Controller):
        return controller.get_research_status(topic_id)

    @app.get("/research/{topic_id}/result", response_model=RecursiveResearchResult)
    async def get_research_result(topic_id: str, controller: Controller):
        """Get the finished research tree.

        Returns:
            The result, or 409 while the run is still queued or running
        """
        result = controller.get_result(topic_id)
        if result is None:
            state = controller.get_research_status(topic_id).state
            raise HTTPException(status_code=409, detail=f"Result not yet available. Current state: {state}")
        return result

    @app.delete("/research/{topic_id}", response_model=CancelResponse)
    async def cancel_research(topic_id: str, controller: Controller):
        cancelled = await controller.cancel_research(topic_id)
        return CancelResponse(
            topic_id=topic_id,
            cancelled=cancelled,
            message="Research cancellation requested" if cancelled else "Research is not active",
        )

    @app.get("/research/{topic_id}/stream")
    async def stream_research(topic_id: str, request: Request, controller: Controller):
        """Stream research updates for ``topic_id`` as Server-Sent Events."""
        controller.get_research_status(topic_id)
        return create_sse_response(topic_id, request, controller.streaming)

    @app.get("/users/{user_id}/history", response_model=list[HistoryEntry])
    async def get_research_history(user_id: str, controller: Controller):
        return controller.get_research_history(user_id)

    return app


app = create_app()


def main() -> None:
    """Run the FastAPI server."""
    import uvicorn

    try:
        uvicorn.run(
            "api.main:app",
            host="0.0.0.0",
            port=8000,
            reload=False,
            log_level="info",
            access_log=True,
        )
    except KeyboardInterrupt:
        print("\nServer stopped")
        sys.exit(0)


if __name__ == "__main__":
    main()
