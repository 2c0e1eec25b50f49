"""
API Module

FastAPI routes for running agents over HTTP.
"""

from .routes import RunRequest, RunResponse, StateResponse, create_router

__all__ = ["RunRequest", "RunResponse", "StateResponse", "create_router"]
