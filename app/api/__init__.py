"""API router for v1 endpoints."""

from fastapi import APIRouter

from app.api import agent, registry

router = APIRouter()

# Agent turns, suggestion approval and context search
router.include_router(agent.router, tags=["agent"])

# Per-project type registry
router.include_router(registry.router, tags=["registry"])
