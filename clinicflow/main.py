from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clinicflow.core.config import settings
from clinicflow.core.exceptions import (
    CollaboratorUnavailable,
    ConsistencyViolation,
    EntityNotFound,
    GuardViolation,
    LifecycleError,
    PermissionDenied,
    StaleState,
)
from clinicflow.core.redis import redis_client
from clinicflow.db.session import init_db
from clinicflow.middleware.log_middleware import LogMiddleware

ERROR_STATUS = {
    GuardViolation: 422,
    StaleState: 409,
    EntityNotFound: 404,
    PermissionDenied: 403,
    CollaboratorUnavailable: 503,
    ConsistencyViolation: 500,
}

@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.AUTO_CREATE_TABLES:
        await init_db()
    yield
    await redis_client.close()

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(LogMiddleware)

@app.exception_handler(LifecycleError)
async def lifecycle_error_handler(request: Request, exc: LifecycleError):
    body = {"detail": exc.message, "code": exc.code}
    if isinstance(exc, GuardViolation):
        body["guard"] = exc.guard
    elif isinstance(exc, StaleState):
        body["retryable"] = True
    elif isinstance(exc, ConsistencyViolation):
        body["problems"] = exc.problems
    return JSONResponse(status_code=ERROR_STATUS.get(type(exc), 500), content=body)

@app.get("/")
async def root():
    return {"message": "Welcome to ClinicFlow API"}

from clinicflow.api.api import api_router
app.include_router(api_router, prefix=settings.API_V1_STR)
