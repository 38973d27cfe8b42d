"""
HTTP endpoints over the ProfileRouter.

- POST /tools/call      one call  -> {content, isError}
- POST /tools/batch     many calls -> per-item status list
- GET  /tools           advertised surface for a profile
- GET  /catalog/search  keyword search over every tool
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .router import ProfileRouter
from .types import Profile


logger = logging.getLogger("godot_bridge.http")

router = APIRouter(tags=["Tools"])

# Set by the server module at startup
_router: Optional[ProfileRouter] = None


def init_bridge_routes(profile_router: Optional[ProfileRouter]) -> None:
    """Initialize route dependencies."""
    global _router
    _router = profile_router


# =============================================================================
# Request Models
# =============================================================================

class CallRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tool_name: str = Field(..., alias="toolName")
    arguments: Optional[dict[str, Any]] = None
    profile: Optional[str] = None


class BatchRequest(BaseModel):
    calls: list[dict[str, Any]]
    profile: Optional[str] = None


# =============================================================================
# Helpers
# =============================================================================

def _require_router() -> ProfileRouter:
    if _router is None:
        raise HTTPException(status_code=503, detail="Server not initialized")
    return _router


def _profile(value: Optional[str]) -> Optional[Profile]:
    if value is None:
        return None
    try:
        return Profile.parse(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# =============================================================================
# Endpoints
# =============================================================================

@router.post("/tools/call")
async def call_tool(request: CallRequest) -> JSONResponse:
    """
    Dispatch one tool call.

    Tool failures are not HTTP failures: the body always carries
    `{content, isError}` with status 200.
    """
    profile_router = _require_router()
    result = await profile_router.dispatch(request.tool_name, request.arguments, _profile(request.profile))
    return JSONResponse(content=result.to_dict())


@router.post("/tools/batch")
async def call_batch(request: BatchRequest) -> JSONResponse:
    profile_router = _require_router()
    result = await profile_router.dispatch_batch(request.calls, _profile(request.profile))
    return JSONResponse(content=result.to_dict())


@router.get("/tools")
async def list_tools(profile: Optional[str] = Query(None, description="compact, full or legacy")) -> JSONResponse:
    profile_router = _require_router()
    selected = _profile(profile) or profile_router.profile
    return JSONResponse(content={
        "profile": selected.value,
        "tools": profile_router.list_tools(selected),
    })


@router.get("/catalog/search")
async def search_catalog(
    query: str = Query(..., min_length=1),
    profile: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=100)
) -> JSONResponse:
    """Search every tool, flagging which ones the profile advertises."""
    profile_router = _require_router()
    selected = _profile(profile) or profile_router.profile
    return JSONResponse(content={
        "query": query,
        "profile": selected.value,
        "matches": profile_router.search_catalog(query, selected, limit),
    })
