import json
import logging
import random
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from personalbot.api.routes import router
from personalbot.config import Settings
from personalbot.graph.agents import ProviderAgent
from personalbot.graph.checkup import SchedulingAgent
from personalbot.graph.claims import ClaimsAgent
from personalbot.graph.llm import Completion, anthropic_completion
from personalbot.graph.requester import RequesterAgent
from personalbot.services.orchestrator import Orchestrator
from personalbot.services.pricing import PricingService
from personalbot.services.profile_store import ProfileStore
from personalbot.services.sessions import SessionRegistry

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# WebSocket manager
# ---------------------------------------------------------------------------

class ConnectionManager:
    """Tracks the open WebSocket of every session."""

    def __init__(self) -> None:
        self._connections: dict[str, WebSocket] = {}

    async def connect(self, session_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections[session_id] = websocket

    def disconnect(self, session_id: str) -> None:
        self._connections.pop(session_id, None)

    async def send(self, session_id: str, event: str, data: Any) -> None:
        ws = self._connections.get(session_id)
        if ws is None:
            return
        try:
            await ws.send_text(json.dumps({"event": event, "data": data}, default=str))
        except Exception as exc:
            logger.warning("Dropping connection for session %s: %s", session_id, exc)
            self.disconnect(session_id)


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

def create_app(
    settings: Optional[Settings] = None,
    completion: Optional[Completion] = None,
    rng: Optional[random.Random] = None,
) -> FastAPI:
    """Build the service. ``completion`` and ``rng`` replace the live model and randomness."""
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        complete = completion or anthropic_completion(settings)
        profiles = ProfileStore(settings.profile_path)
        registry = SessionRegistry()
        ws_manager = ConnectionManager()
        pricing = PricingService(ttl_seconds=settings.pricing_cache_ttl_seconds, rng=rng)

        requester = RequesterAgent(
            complete,
            profiles,
            history_window=settings.history_window,
            timeout_seconds=settings.agent_timeout_seconds,
        )
        app.state.settings = settings
        app.state.profiles = profiles
        app.state.registry = registry
        app.state.ws_manager = ws_manager
        app.state.orchestrator = Orchestrator(
            registry=registry,
            requester=requester,
            provider=ProviderAgent(complete, pricing, profiles),
            claims=ClaimsAgent(complete, profiles),
            scheduling=SchedulingAgent(profiles, rng=rng),
            emit=ws_manager.send,
            settings=settings,
        )
        logger.info("PersonalBot ready (model %s)", settings.model)
        yield

    app = FastAPI(title="PersonalBot API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
