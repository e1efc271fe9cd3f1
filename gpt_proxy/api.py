"""FastAPI entrypoint: prompt → conversation manager → completion API → reply; GraphQL for stored history."""
import asyncio
import logging
import secrets
from contextlib import asynccontextmanager, suppress
from typing import Any, Optional

import strawberry
from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as SchemaValidationError
from strawberry.fastapi import GraphQLRouter

from .config import config
from .conversation_manager import ConversationManager
from .errors import ValidationError
from .graphql.conversation_schema import Query as GraphQLQuery
from .inference.backend import get_llm_backend
from .ops import get_process_health
from .result import Failure
from .schemas import GptRequest
from .shared_services.conversation_store import InMemoryConversationStore

logger = logging.getLogger(__name__)

# --- App setup ---

conversation_store = InMemoryConversationStore(ttl_seconds=config.conversation_ttl_seconds)
conversation_manager = ConversationManager.from_config(store=conversation_store, backend=get_llm_backend())


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not config.app_api_key:
        logger.warning("APP_API_KEY is not set; every authenticated request will be rejected")
    sweeper = asyncio.create_task(conversation_store.run_sweeper(config.sweep_interval_seconds))
    yield
    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper


app = FastAPI(title="GPT Proxy", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


class Unauthorized(Exception):
    """Raised by require_api_key; rendered as a flat 401 body."""


@app.exception_handler(Unauthorized)
async def unauthorized_handler(request: Request, exc: Unauthorized):
    return JSONResponse(
        status_code=401,
        content={"statusCode": 401, "error": "Unauthorized", "details": "Missing apiKey"},
    )


def require_api_key(api_key: Optional[str] = Query(default=None, alias="apiKey")) -> None:
    """Static shared secret in the apiKey query parameter. Fails closed when APP_API_KEY is unset."""
    expected = config.app_api_key
    if not expected or not api_key or not secrets.compare_digest(api_key, expected):
        raise Unauthorized()


# GraphQL: conversation history query API at /graphql
graphql_schema = strawberry.Schema(GraphQLQuery)


def get_graphql_context(request=None):
    return {"conversation_manager": conversation_manager}


graphql_app = GraphQLRouter(graphql_schema, context_getter=get_graphql_context)
app.include_router(graphql_app, prefix="/graphql", dependencies=[Depends(require_api_key)])


# --- Endpoints ---

@app.get("/health")
async def health():
    """Health check: process uptime, memory usage and number of cached conversations."""
    try:
        return get_process_health(conversations=len(conversation_store))
    except Exception as e:
        logger.exception("Health check failed")
        return JSONResponse(status_code=500, content={"status": "error", "error": str(e)})


@app.post("/v1/gpt", dependencies=[Depends(require_api_key)])
async def talk(body: Any = Body(default=None)):
    """
    Forward a prompt to the completion API.
    With useMemory, the user's recent history is sent along and the reply is appended to it.
    """
    try:
        req = GptRequest.model_validate(body)
    except SchemaValidationError as e:
        return JSONResponse(
            status_code=400,
            content={
                "statusCode": 400,
                "error": "Validation Error",
                "details": [{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]} for err in e.errors()],
            },
        )

    if req.reset_history and req.user_id:
        await conversation_manager.reset(req.user_id)

    result = await conversation_manager.exchange(req.to_exchange_request())
    if isinstance(result, Failure):
        status = 400 if isinstance(result.error, ValidationError) else 500
        return JSONResponse(
            status_code=status,
            content={"statusCode": status, "error": "Request failed", "details": result.error.message},
        )

    outcome = result.value
    data: dict[str, Any] = {"response": outcome.reply.to_dict()}
    if outcome.history is not None:
        data["history"] = [m.to_dict() for m in outcome.history]
    return {"statusCode": 200, "data": data}


@app.delete("/v1/gpt", dependencies=[Depends(require_api_key)])
async def reset_history(user_id: Optional[str] = Query(default=None, alias="userId")):
    """Drop the stored history for a user."""
    if not user_id:
        return JSONResponse(status_code=400, content={"statusCode": 400, "error": "userId is not provided"})
    if await conversation_manager.reset(user_id):
        return {"statusCode": 200, "message": "ok"}
    return JSONResponse(
        status_code=400,
        content={"statusCode": 400, "message": f"user {user_id} history could not be deleted"},
    )
