"""Story catalog endpoints."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/stories")
async def list_stories(request: Request):
    """List every loaded story with its player role."""
    return request.app.state.catalog.summaries()
