import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from splitsync.api.deps import session_manager
from splitsync.api.v1.api import api_router
from splitsync.core.config import settings
from splitsync.core.logging_config import configure_logging
from splitsync.db.mongo import close_mongo_connection, connect_to_mongo


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await connect_to_mongo()
    sweeper = asyncio.create_task(session_manager.sweep())
    yield
    sweeper.cancel()
    session_manager.close_all()
    await close_mongo_connection()


app = FastAPI(
    title=settings.PROJECT_NAME,
    description=settings.DESCRIPTION,
    version=settings.PROJECT_VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/")
async def root():
    return {"message": "Welcome to SplitSync API"}

app.include_router(api_router, prefix=settings.API_V1_STR)
