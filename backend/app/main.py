import asyncio
import logging
import os
from contextlib import asynccontextmanager, suppress

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from routes.projects import router as projects_router  # noqa: E402
from routes.storyboard import router as storyboard_router  # noqa: E402
from services import config  # noqa: E402
from services.orchestrator import orchestrator  # noqa: E402

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    sweeper = asyncio.create_task(orchestrator.run_sweeper(), name="job-retention-sweeper")
    logger.info("[main] Started job sweeper (ttl=%ss)", config.get_job_ttl_seconds())
    try:
        yield
    finally:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper


app = FastAPI(title="Storyboard API", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.get_cors_origins(),
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(storyboard_router, prefix="/api")
app.include_router(projects_router, prefix="/api")


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "8000")))
