from __future__ import annotations

import os
from time import perf_counter
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import Counter, Histogram, make_asgi_app

from libs.core import logging as core_logging
from libs.core.dispatcher import AgentDispatcher
from libs.core.errors import AgentError, UnknownAgentError, UnknownToolError
from libs.core.history import HistoryStoreError, RedisAgentHistory
from libs.core.models import ApiEnvelope, ToolRunRequest
from .service import (
    create_dispatcher_from_env,
    create_history_from_env,
    describe_provider,
    run_agent_tool,
)

core_logging.configure_logging("agents")
LOGGER = core_logging.get_logger("agents")
UNKNOWN_LABEL = "unknown"

app = FastAPI(title="Agent Tool Service")

cors_origins = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

app.state.dispatcher = create_dispatcher_from_env()
app.state.history = create_history_from_env()

agent_runs_total = Counter(
    "agent_runs_total", "Agent tool executions", ["agent", "tool", "outcome"]
)
agent_run_seconds = Histogram(
    "agent_run_seconds", "Agent tool execution latency", ["agent", "tool"]
)


@app.exception_handler(AgentError)
async def _agent_error_handler(_request: Request, exc: AgentError) -> JSONResponse:
    # 5xx bodies stay generic; provider details and raw model text are only logged.
    detail = exc.detail if exc.status_code < 500 else "Agent execution failed"
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": detail, "error_code": exc.error_code},
    )


def get_dispatcher(request: Request) -> AgentDispatcher:
    return request.app.state.dispatcher


def get_history(request: Request) -> RedisAgentHistory:
    return request.app.state.history


def require_user(x_user: str | None = Header(default=None)) -> str:
    if not x_user or not x_user.strip():
        raise HTTPException(status_code=401, detail="Not logged in")
    return x_user.strip()


@app.get("/health")
def health(dispatcher: AgentDispatcher = Depends(get_dispatcher)) -> dict[str, Any]:
    return {"status": "ok", **describe_provider(dispatcher.provider)}


@app.get("/agents", response_model=ApiEnvelope)
def list_agents(dispatcher: AgentDispatcher = Depends(get_dispatcher)) -> ApiEnvelope:
    agents = [summary.model_dump() for summary in dispatcher.registry.describe()]
    return ApiEnvelope(message="Agents retrieved", data={"agents": agents})


@app.get("/agents/history", response_model=ApiEnvelope)
def get_agent_history(
    username: str = Depends(require_user),
    history: RedisAgentHistory = Depends(get_history),
) -> ApiEnvelope:
    try:
        entries = history.for_user(username)
    except HistoryStoreError as exc:
        LOGGER.error("agent_history_read_failed", user=username, error=str(exc))
        raise HTTPException(status_code=503, detail="History unavailable") from exc
    return ApiEnvelope(
        message="Agent history retrieved",
        data={"history": [entry.model_dump(mode="json") for entry in entries]},
    )


@app.delete("/agents/history", response_model=ApiEnvelope)
def clear_agent_history(
    username: str = Depends(require_user),
    history: RedisAgentHistory = Depends(get_history),
) -> ApiEnvelope:
    try:
        history.clear(username)
    except HistoryStoreError as exc:
        LOGGER.error("agent_history_clear_failed", user=username, error=str(exc))
        raise HTTPException(status_code=503, detail="History unavailable") from exc
    return ApiEnvelope(message="Agent history cleared", data={})


@app.post("/agents/{agent}/{tool}", response_model=ApiEnvelope)
def run_agent(
    agent: str,
    tool: str,
    request: ToolRunRequest,
    username: str = Depends(require_user),
    dispatcher: AgentDispatcher = Depends(get_dispatcher),
    history: RedisAgentHistory = Depends(get_history),
) -> ApiEnvelope:
    started = perf_counter()
    try:
        result = run_agent_tool(
            dispatcher,
            history,
            username=username,
            agent_key=agent,
            tool_key=tool,
            tool_input=request.input,
        )
    except (UnknownAgentError, UnknownToolError) as exc:
        # Path segments are caller-controlled; only registered keys become label values.
        agent_runs_total.labels(
            agent=UNKNOWN_LABEL, tool=UNKNOWN_LABEL, outcome=exc.error_code
        ).inc()
        raise
    except AgentError as exc:
        agent_runs_total.labels(agent=agent, tool=tool, outcome=exc.error_code).inc()
        raise
    agent_runs_total.labels(agent=agent, tool=tool, outcome="ok").inc()
    agent_run_seconds.labels(agent=agent, tool=tool).observe(perf_counter() - started)
    return ApiEnvelope(message="Agent executed successfully", data=result)
