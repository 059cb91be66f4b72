# goaltrack API entry point
import logging
import sys

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .errors import TrackerError
from .infra.rate_limit import limiter
from .settings import settings
from .routers.ready import router as ready_router
from .routers.auth import router as auth_router
from .routers.shares import router as shares_router
from .routers.workspaces import router as workspaces_router
from .routers.goals import router as goals_router
from .routers.tasks import router as tasks_router

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger("goaltrack")

app = FastAPI(title="goaltrack API", version="0.1.0")
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(TrackerError)
async def tracker_error_handler(request: Request, exc: TrackerError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ready_router, prefix="/api", tags=["ready"])
app.include_router(auth_router, prefix="/api")
# Before workspaces so /workspaces/my-invitations is not read as /workspaces/{id}
app.include_router(shares_router, prefix="/api")
app.include_router(workspaces_router, prefix="/api")
app.include_router(goals_router, prefix="/api")
app.include_router(tasks_router, prefix="/api")
