from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from .db import init_db, close_db
from .core.config import get_settings
from .core.errors import InvalidQuery, IntegrityViolation, NotFound, StorageUnavailable
from .routers import activities, facts, members, ranking

settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("club-ranking-svc")

@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    logger.info("database ready")
    yield
    await close_db()

app = FastAPI(title="club-ranking-svc", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(StorageUnavailable)
async def storage_unavailable_handler(request: Request, exc: StorageUnavailable):
    logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})

@app.exception_handler(InvalidQuery)
async def invalid_query_handler(request: Request, exc: InvalidQuery):
    return JSONResponse(status_code=422, content={"detail": str(exc)})

@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})

@app.exception_handler(IntegrityViolation)
async def integrity_handler(request: Request, exc: IntegrityViolation):
    return JSONResponse(status_code=400, content={"detail": str(exc)})

app.include_router(ranking.router)
app.include_router(members.router)
app.include_router(activities.router)
app.include_router(facts.router)

@app.get("/health")
async def health():
    return {"status": "ok", "service": "club-ranking-svc"}

Instrumentator().instrument(app).expose(app)
