import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.routes import router
from storyplay.config import Settings, load_settings
from storyplay.llm import LLM, HttpLLM
from storyplay.orchestrator import InvalidInput
from storyplay.sessions import SessionNotFound, SessionStore
from storyplay.stories import StoryCatalog, StoryLoadError

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    llm: LLM | None = None,
    catalog: StoryCatalog | None = None,
) -> FastAPI:
    settings = settings or load_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    catalog = catalog or StoryCatalog.load(settings.stories_dir)
    llm = llm or HttpLLM.from_settings(settings)

    app = FastAPI(title="Story Tavern")
    app.state.settings = settings
    app.state.catalog = catalog
    app.state.llm = llm
    app.state.sessions = SessionStore(catalog, llm, settings)
    app.include_router(router, prefix="/api")

    @app.exception_handler(StoryLoadError)
    async def story_load_error(request: Request, exc: StoryLoadError):
        logger.error("%s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": "Story failed to initialize"})

    @app.exception_handler(InvalidInput)
    async def invalid_input(request: Request, exc: InvalidInput):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(SessionNotFound)
    async def session_not_found(request: Request, exc: SessionNotFound):
        return JSONResponse(status_code=404, content={"detail": "Session not found"})

    return app


# Default app instance for uvicorn (settings from the environment / .env)
app = create_app()
