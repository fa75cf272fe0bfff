import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException
from custody.config import settings
from custody.core.errors import LedgerError
from custody.core.logging_config import configure_logging
from custody.core.redis import get_redis, close_redis
from custody.engine import Engine
from custody.routers import deposits, health, withdrawals

logger = logging.getLogger("custody")


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL)
    logger.info("Starting custody engine: automatic deposits & withdrawals")
    redis = await get_redis()
    engine = Engine(settings, redis=redis)
    app.state.engine = engine
    await engine.start()
    yield
    logger.info("Shutting down custody engine")
    await engine.stop()
    await close_redis()

app = FastAPI(title="Custody Engine API", lifespan=lifespan)

_allowed_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()] or ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HTTPException)
async def http_error(request: Request, exc: HTTPException):
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "; ".join(
        f"{'.'.join(str(p) for p in e['loc'][1:]) or 'body'}: {e['msg']}" for e in errors
    )
    return JSONResponse({"error": message or "invalid request"}, status_code=400)


@app.exception_handler(SQLAlchemyError)
async def database_error(request: Request, exc: SQLAlchemyError):
    logger.exception("Database error on %s", request.url.path)
    return JSONResponse({"error": "database unavailable"}, status_code=503)


@app.exception_handler(LedgerError)
async def ledger_error(request: Request, exc: LedgerError):
    logger.exception("Ledger error on %s", request.url.path)
    return JSONResponse({"error": f"ledger unavailable: {exc}"}, status_code=502)


app.include_router(health.router)
app.include_router(deposits.router)
app.include_router(withdrawals.router)


def run():
    import uvicorn
    uvicorn.run("custody.main:app", host="0.0.0.0", port=settings.PORT)


if __name__ == "__main__":
    run()
