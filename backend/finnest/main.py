import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from finnest.database import init_db
from finnest.errors import (
    EngineError,
    InvalidGrade,
    InvalidState,
    NotFound,
    ParseFailure,
    StoreUnavailable,
)
from finnest.routers import auth, cards, decks, review, settings

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    NotFound: status.HTTP_404_NOT_FOUND,
    InvalidGrade: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InvalidState: status.HTTP_409_CONFLICT,
    StoreUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    ParseFailure: status.HTTP_400_BAD_REQUEST,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(title="Finnest Vocabulary API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            status_code = code
            break
    logger.warning("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "type": type(exc).__name__},
    )


app.include_router(auth.router)
app.include_router(decks.router)
app.include_router(review.router)
app.include_router(cards.router)
app.include_router(settings.router)


@app.get("/")
def root():
    return {"app": "finnest", "version": "0.1.0"}
