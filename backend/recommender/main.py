from contextlib import asynccontextmanager

from fastapi import FastAPI

from recommender.api.recommendations import router as recommendations_router
from recommender.core.config import settings
from recommender.services.backend import get_backend
from recommender.utils.logger import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    # Index and mappings must exist before any read or write
    get_backend().boot()
    yield


app = FastAPI(title="Recommendations API", version="1.0.0", lifespan=lifespan)

app.include_router(recommendations_router, prefix="/api/recommendations", tags=["Recommendations"])
