"""
Agent API Routes
Agent API 路由

Provides HTTP endpoints for running agents:
- POST /api/agents/{session_id}/run     - Run agent to completion
- POST /api/agents/{session_id}/stream  - Run agent, streaming SSE events
- POST /api/agents/{session_id}/reset   - Reset agent state
- GET  /api/agents/{session_id}/state   - Get agent state
- DELETE /api/agents/{session_id}       - Drop a session
"""

from __future__ import annotations
import logging
from contextlib import aclosing
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from ..constants import StreamEventType
from ..core.agent import Agent
from ..core.stream_generator import StreamEvent
from ..errors import AgentInterruptedError, AgentLoopError, AgentStateError

logger = logging.getLogger(__name__)

AgentFactory = Callable[[str], Agent]


# ============================================
# Request/Response Models
# ============================================

class RunRequest(BaseModel):
    """Request model for run / stream"""
    message: str = Field(..., description="User message")

class RunResponse(BaseModel):
    """Response model for run"""
    success: bool
    status: str
    output: Optional[str] = None
    loop_count: int = 0
    usage: Dict[str, int] = Field(default_factory=dict)
    error: Optional[str] = None

class ResetRequest(BaseModel):
    """Request model for reset"""
    clear_history: bool = Field(True, description="Also clear conversation history")

class StateResponse(BaseModel):
    """Response model for state"""
    session_id: str
    name: str
    status: str
    loop_count: int
    retry_count: int
    messages: int
    tool_calls: int
    last_error: Optional[str] = None


# ============================================
# Router
# ============================================

def create_router(agent_factory: AgentFactory, prefix: str = "/api/agents") -> APIRouter:
    """
    Build the agent router

    Args:
        agent_factory: Creates a new Agent for a session ID
        prefix: Route prefix

    Returns:
        APIRouter with one Agent per session, created on first run
    """
    router = APIRouter(prefix=prefix, tags=["agents"])
    sessions: Dict[str, Agent] = {}

    def get_or_create(session_id: str) -> Agent:
        agent = sessions.get(session_id)
        if agent is None:
            agent = agent_factory(session_id)
            sessions[session_id] = agent
            logger.info(f"Session created: {session_id}")
        return agent

    def require(session_id: str) -> Agent:
        agent = sessions.get(session_id)
        if agent is None:
            raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
        return agent

    @router.post("/{session_id}/run", response_model=RunResponse)
    async def run_agent(session_id: str, request: RunRequest):
        """
        Run the agent to completion
        运行 Agent 直到结束
        """
        agent = get_or_create(session_id)
        try:
            output = await agent.run(request.message)
        except AgentStateError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except (AgentInterruptedError, AgentLoopError) as e:
            return RunResponse(
                success=False,
                status=agent.status.value,
                loop_count=agent.state.loop_count,
                error=str(e),
            )

        return RunResponse(
            success=True,
            status=agent.status.value,
            output=output.text if output is not None else None,
            loop_count=agent.state.loop_count,
            usage=output.usage.to_dict() if output is not None else {},
        )

    @router.post("/{session_id}/stream")
    async def stream_agent(session_id: str, request: RunRequest):
        """
        Run the agent, streaming Server-Sent Events
        以 SSE 流式运行 Agent
        """
        agent = get_or_create(session_id)
        if agent.state.is_running:
            raise HTTPException(status_code=409, detail=f"Agent {agent.name} is already running")
        if agent.state.is_finished:
            raise HTTPException(
                status_code=409,
                detail=f"Agent {agent.name} already finished with status {agent.status.value}; reset first",
            )

        async def event_generator():
            try:
                # Closing the response (client disconnect) closes the agent run
                async with aclosing(agent.run_stream(request.message)) as events:
                    async for event in events:
                        yield event.to_sse()
            except (AgentInterruptedError, AgentLoopError) as e:
                logger.warning(f"Stream failed for session {session_id}: {e}")
                yield StreamEvent(
                    event_type=StreamEventType.ERROR,
                    data={"error": str(e), "status": agent.status.value},
                ).to_sse()

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @router.post("/{session_id}/reset", response_model=StateResponse)
    async def reset_agent(session_id: str, request: Optional[ResetRequest] = None):
        """
        Reset agent state
        重置 Agent 状态
        """
        agent = require(session_id)
        try:
            agent.reset(clear_history=request.clear_history if request is not None else True)
        except AgentStateError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return _state_response(session_id, agent)

    @router.get("/{session_id}/state", response_model=StateResponse)
    async def get_state(session_id: str):
        """
        Get agent state
        获取 Agent 状态
        """
        return _state_response(session_id, require(session_id))

    @router.delete("/{session_id}")
    async def delete_session(session_id: str):
        """
        Drop a session and its agent
        删除会话
        """
        agent = require(session_id)
        if agent.state.is_running:
            raise HTTPException(status_code=409, detail=f"Agent {agent.name} is running; abort it first")

        sessions.pop(session_id, None)
        logger.info(f"Session deleted: {session_id}")
        return {
            "success": True,
            "message": f"Deleted session: {session_id}",
        }

    return router


def _state_response(session_id: str, agent: Agent) -> StateResponse:
    state: Dict[str, Any] = agent.state.to_dict()
    return StateResponse(
        session_id=session_id,
        name=agent.name,
        status=state["status"],
        loop_count=state["loop_count"],
        retry_count=state["retry_count"],
        messages=len(agent.history),
        tool_calls=state["tool_calls"],
        last_error=state["last_error"],
    )
