import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.core.config import engine_settings
from src.core.logging_config import setup_logging
from src.routers import assessment as assessment_router

# Configure logging early
setup_logging(engine_settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Trauma Classification Engine - Assessment API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Include Routers ---
app.include_router(assessment_router.router, prefix="/api/v1", tags=["assessment"])


@app.get("/", tags=["Health Check"])
async def read_root():
    """
    Root endpoint for basic health check.
    """
    return {
        "status": "ok",
        "message": "Trauma Classification Engine is running.",
        "storeBackend": engine_settings.store_backend,
    }


if __name__ == "__main__":
    import uvicorn
    # Better to run with `uvicorn main:app --reload` from the project root directory
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
