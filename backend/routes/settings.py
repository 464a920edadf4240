"""Health check and LLM connection status endpoints."""

from fastapi import APIRouter, Request

router = APIRouter()


def _llm_status(llm) -> dict:
    status = getattr(llm, "status", None)
    if status is None:
        return {"connected": True, "provider": type(llm).__name__, "model": None}
    return status()


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/llm/status")
async def llm_status(request: Request):
    """Last known state of the LLM backend connection."""
    return _llm_status(request.app.state.llm)


@router.post("/llm/check")
async def llm_check(request: Request):
    """Probe the LLM backend once and report the result."""
    llm = request.app.state.llm
    check = getattr(llm, "check_connection", None)
    ok = await check() if check is not None else True
    return {"ok": ok, **_llm_status(llm)}
