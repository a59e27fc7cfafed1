"""HTTP boundary for the discussion engine.

Endpoints:
  GET  /health                          - Liveness + server time
  GET  /models                          - Model catalogue, default prompts, usable providers
  POST /discussions/start               - Create a discussion and start its loop
  GET  /discussions/{id}                - Discussion snapshot (transcript + status)
  GET  /discussions/{id}/stream         - SSE stream of the discussion's events
  POST /discussions/{id}/intervention   - Human message; primary answers next
  POST /discussions/{id}/stop           - Stop the discussion (idempotent)
"""

from __future__ import annotations

import contextlib
import json
import logging
from datetime import UTC, datetime
from typing import Any

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, StreamingResponse
from starlette.routing import Route

from config.config_loader import AppConfig
from src.discussion import DiscussionOrchestrator
from src.models import ROLES, Participant
from src.sinks import Subscription
from src.store import DiscussionNotFoundError, DiscussionStoppedError, InvalidDiscussionError

logger = logging.getLogger(__name__)

KEEPALIVE_FRAME = ":keep-alive\n\n"


def format_event(data: dict[str, Any]) -> str:
    return f"data: {json.dumps(data)}\n\n"


def parse_participant(raw: Any, providers: set[str], default_prompts: dict[str, str]) -> Participant:
    """Build a Participant from its JSON shape.

    A missing or blank systemPrompt falls back to the role's default prompt.

    Raises:
        ValueError: On a missing field, unknown role or unavailable provider.
    """
    if not isinstance(raw, dict):
        raise ValueError("Each participant must be an object")
    for key in ("id", "provider", "modelId", "displayName", "role"):
        value = raw.get(key)
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"Participant field '{key}' must be a non-empty string")
    role = raw["role"]
    if role not in ROLES:
        raise ValueError(f"Unknown participant role: {role}")
    if raw["provider"] not in providers:
        raise ValueError(f"Provider not available: {raw['provider']}")
    system_prompt = raw.get("systemPrompt")
    if not isinstance(system_prompt, str) or not system_prompt.strip():
        system_prompt = default_prompts[role]
    return Participant(
        id=raw["id"],
        provider=raw["provider"],
        model_id=raw["modelId"],
        display_name=raw["displayName"],
        system_prompt=system_prompt,
        role=role,
    )


async def event_stream(subscription: Subscription, on_close: Any, keepalive_sec: float):
    """Yield SSE frames for a subscription until the client goes away."""
    try:
        while True:
            event = await subscription.get(timeout=keepalive_sec)
            if event is None:
                yield KEEPALIVE_FRAME
                continue
            yield format_event(event.to_dict())
    finally:
        on_close()


def create_app(
    orchestrator: DiscussionOrchestrator,
    config: AppConfig,
    lifespan: Any | None = None,
) -> Starlette:
    """Create the Starlette ASGI app with all routes."""
    store = orchestrator.store
    sinks = orchestrator.sinks
    default_prompts = {
        "primary": config.discussion.default_primary_prompt,
        "critic": config.discussion.default_critic_prompt,
    }

    async def read_json(request: Request) -> dict[str, Any] | None:
        try:
            body = await request.json()
        except Exception:
            return None
        return body if isinstance(body, dict) else None

    async def health(request: Request) -> JSONResponse:
        """GET /health - Liveness check."""
        return JSONResponse({"status": "ok", "timestamp": datetime.now(UTC).isoformat()})

    async def list_models(request: Request) -> JSONResponse:
        """GET /models - Models whose provider has a live adapter."""
        providers = set(orchestrator.providers())
        return JSONResponse(
            {
                "models": [
                    {"id": m.id, "name": m.name, "provider": m.provider}
                    for m in config.models
                    if m.provider in providers
                ],
                "providers": sorted(providers),
                "defaultPrompts": default_prompts,
            }
        )

    async def start_discussion(request: Request) -> JSONResponse:
        """POST /discussions/start - Create a discussion, run it in the background."""
        body = await read_json(request)
        if body is None:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

        topic = body.get("topic")
        participants_raw = body.get("participants")
        if not isinstance(topic, str) or not topic.strip() or not isinstance(participants_raw, list) or len(participants_raw) != 2:
            return JSONResponse(
                {"error": "Invalid request: topic and exactly 2 participants required"},
                status_code=400,
            )

        providers = set(orchestrator.providers())
        try:
            participants = [parse_participant(p, providers, default_prompts) for p in participants_raw]
            discussion_id = orchestrator.start_discussion(topic, participants)
        except (ValueError, InvalidDiscussionError) as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        except Exception as e:
            logger.error("Error starting discussion: %s", e)
            return JSONResponse({"error": "Failed to start discussion"}, status_code=500)

        return JSONResponse({"discussionId": discussion_id})

    async def get_discussion(request: Request) -> JSONResponse:
        """GET /discussions/{id} - Snapshot of a discussion."""
        discussion = store.find(request.path_params["id"])
        if discussion is None:
            return JSONResponse({"error": "Discussion not found"}, status_code=404)
        snapshot = discussion.to_dict()
        snapshot["messages"] = [m.to_dict() for m in store.messages(discussion.id)]
        return JSONResponse(snapshot)

    async def stream(request: Request) -> StreamingResponse | JSONResponse:
        """GET /discussions/{id}/stream - SSE event stream."""
        discussion_id = request.path_params["id"]
        if store.find(discussion_id) is None:
            return JSONResponse({"error": "Discussion not found"}, status_code=404)

        subscription = sinks.attach(discussion_id)

        def on_close() -> None:
            sinks.detach(discussion_id, subscription)
            logger.info("Client disconnected from discussion: %s", discussion_id)

        return StreamingResponse(
            event_stream(subscription, on_close, config.server.keepalive_sec),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
            },
        )

    async def intervention(request: Request) -> JSONResponse:
        """POST /discussions/{id}/intervention - Human interjection."""
        discussion_id = request.path_params["id"]
        body = await read_json(request)
        content = body.get("content") if body is not None else None
        if not isinstance(content, str) or not content.strip():
            return JSONResponse({"error": "Message content is required"}, status_code=400)

        try:
            message_id = orchestrator.intervene(discussion_id, content)
        except DiscussionNotFoundError:
            return JSONResponse({"error": "Discussion not found"}, status_code=404)
        except DiscussionStoppedError:
            return JSONResponse({"error": "Discussion has been stopped"}, status_code=400)
        except Exception as e:
            logger.error("Error handling intervention: %s", e)
            return JSONResponse({"error": "Failed to handle intervention"}, status_code=500)

        return JSONResponse({"messageId": message_id})

    async def stop(request: Request) -> JSONResponse:
        """POST /discussions/{id}/stop - Stop a discussion."""
        try:
            orchestrator.stop(request.path_params["id"])
        except DiscussionNotFoundError:
            return JSONResponse({"error": "Discussion not found"}, status_code=404)
        return JSONResponse({"status": "stopped"})

    @contextlib.asynccontextmanager
    async def default_lifespan(app: Starlette):
        yield
        await orchestrator.shutdown()

    routes = [
        Route("/health", health),
        Route("/models", list_models),
        Route("/discussions/start", start_discussion, methods=["POST"]),
        Route("/discussions/{id}", get_discussion),
        Route("/discussions/{id}/stream", stream),
        Route("/discussions/{id}/intervention", intervention, methods=["POST"]),
        Route("/discussions/{id}/stop", stop, methods=["POST"]),
    ]
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=config.server.cors_origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    ]
    return Starlette(routes=routes, middleware=middleware, lifespan=lifespan or default_lifespan)
