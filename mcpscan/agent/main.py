import asyncio
import logging
from contextlib import asynccontextmanager
from functools import partial
from typing import Optional

from fastapi import BackgroundTasks, FastAPI
from fastapi.responses import JSONResponse

from mcpscan.config import AgentSettings, configure_logging
from mcpscan.errors import PipelineError, TransportError
from mcpscan.protocol import ScanRequestMessage

from .client import CoordinatorClient
from .pipeline import process_scan_request
from .registration import run_agent
from .session import AgentSession


log = logging.getLogger("mcpscan.agent")


def handle_pushed_scan(
    session: AgentSession,
    client: CoordinatorClient,
    settings: AgentSettings,
    scan_id: str,
    repository_url: str,
    branch: str,
) -> None:
    """Background body of POST /api/scan: claim, then run the pipeline."""
    agent_id = session.agent_id
    try:
        if not client.claim(scan_id, agent_id):
            log.info("Pushed scan %s was claimed elsewhere, skipping", scan_id)
            return
    except TransportError as e:
        log.error("Error claiming pushed scan %s: %s", scan_id, e)
        return

    try:
        process_scan_request(session, client, settings, scan_id, repository_url, branch)
        log.info("Scan %s completed", scan_id)
    except PipelineError as e:
        log.error("Scan %s failed: %s", scan_id, e.cause)


def create_app(
    settings: Optional[AgentSettings] = None,
    client: Optional[CoordinatorClient] = None,
    session: Optional[AgentSession] = None,
    start_loops: bool = True,
) -> FastAPI:
    settings = settings or AgentSettings.from_env()
    client = client or CoordinatorClient(settings)
    session = session or AgentSession()
    process = partial(process_scan_request, session, client, settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = None
        if start_loops:
            log.info("Agent %s starting, coordinator at %s", settings.name, settings.server_url)
            task = asyncio.create_task(run_agent(session, client, settings, process))
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                log.info("Agent loops stopped")

    app = FastAPI(title="mcp-scan - Scanner Agent", lifespan=lifespan)
    app.state.settings = settings
    app.state.client = client
    app.state.session = session

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.get("/api/session")
    def session_state() -> dict:
        return session.snapshot()

    @app.post("/api/scan", status_code=202)
    def accept_scan(message: ScanRequestMessage, background: BackgroundTasks):
        if not message.scan_id or not message.repository_url:
            log.error("Invalid scan request: missing required fields")
            return JSONResponse(
                status_code=400,
                content={"error": "Missing required fields: scanId and repositoryUrl are required"},
            )
        if not session.is_registered:
            return JSONResponse(status_code=503, content={"error": "Agent is not registered"})

        log.info("Received scan request %s for %s", message.scan_id, message.repository_url)
        background.add_task(
            handle_pushed_scan,
            session,
            client,
            settings,
            message.scan_id,
            message.repository_url,
            message.branch or "main",
        )
        return {"message": "Scan request accepted", "scanId": message.scan_id}

    return app


def run() -> None:
    import uvicorn

    configure_logging()
    settings = AgentSettings.from_env()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    run()
