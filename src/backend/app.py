import logging
import sys
from contextlib import asynccontextmanager

# FastAPI imports
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Local imports
from src.backend.jobs.api.completion_router import completion_router, failed_runs
from src.backend.jobs.config.settings import CompletionSettings


# Some unit tests patch symbols via the top-level module name `app`.
# When this file is imported as `src.backend.app`, create an alias so both names
# refer to the same module object.
sys.modules.setdefault("app", sys.modules[__name__])

settings = CompletionSettings.from_env()

# Configure logging levels from environment variables
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logging.getLogger("httpx").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage FastAPI application lifecycle - startup and shutdown."""
    logger = logging.getLogger(__name__)

    logger.info("Starting artisan completion API (rpc=%s)", settings.rpc_base_url)
    yield

    if failed_runs:
        logger.warning(
            "Shutting down with %s failed completion run(s) not retried: %s",
            len(failed_runs),
            sorted(failed_runs),
        )
    failed_runs.clear()
    logger.info("Artisan completion API shutdown complete")


# Initialize the FastAPI app
app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins for development; restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(completion_router, prefix="/api")


@app.get("/health")
async def health():
    return {"status": "ok"}


# Run the app
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
        log_level="info",
        access_log=False,
    )
