import asyncio
import contextlib
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse

from app.api.v1.router import router as v1_router
from app.config import settings
from app.logging_config import setup_logging
from app.middleware.rate_limit import rate_limit_middleware
from app.schemas.common import ErrorResponse
from app.services.cleanup import run_cleanup_loop
from app.services.exceptions import XenBoxError

# Setup application logging
logger = setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 背景定期清理閒置的上傳session與孤立的暫存chunk
    cleanup_task = None
    if settings.XENBOX_CLEANUP_INTERVAL_SECONDS > 0:
        cleanup_task = asyncio.create_task(
            run_cleanup_loop(settings.XENBOX_CLEANUP_INTERVAL_SECONDS)
        )

    yield

    if cleanup_task is not None:
        cleanup_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await cleanup_task


app = FastAPI(title="XenBox API", lifespan=lifespan)

# 參數 "http" 表示這是 HTTP 中介軟體（會處理每個HTTP請求/回應）
app.middleware("http")(rate_limit_middleware)

# prefix參數設定URL路徑前綴，所有透過v1_router定義的endpoint都會加上這個前綴
app.include_router(v1_router, prefix="/api/v1")


@app.exception_handler(XenBoxError)
async def xenbox_exception_handler(request: Request, exc: XenBoxError):
    """Domain errors carry their own status code and client-safe message."""
    logger.info(
        f"{exc.__class__.__name__} on {request.method} {request.url.path}: {exc.detail}"
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


# 當任何地方拋出HTTPException時，呼叫下面的function
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Unwrap the 'detail' field from HTTPException responses."""
    content = exc.detail

    if isinstance(content, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content=content,
            headers=exc.headers,
        )

    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error="Unauthorized" if exc.status_code == 401 else "Error",
            message=str(content),
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    # exc_info=True 把完整的錯誤堆疊都記錄下來
    logger.error(
        f"Unhandled exception: {exc.__class__.__name__}: {str(exc)}",
        exc_info=True,
        extra={
            "path": request.url.path,
            "method": request.method,
        },
    )

    # Return safe, static message to client (no internal details exposed)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error="Internal Server Error",
            message="An unexpected error occurred",
        ).model_dump(),
    )
