import logging
import time
import traceback

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from starlette import status
from starlette.exceptions import HTTPException
from starlette.responses import JSONResponse

from blogify.routes import admin, auth, comment, post, social, user
from blogify.utils.responses import error_response
from config import CORS_ORIGINS, ENVIRONMENT, LOG_LEVEL
from database import create_tables, utcnow

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("blogify")

app = FastAPI(title="Blogify API")

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.middleware("http")
async def reject_unknown_origins(request: Request, call_next):
    origin = request.headers.get("origin")
    if ENVIRONMENT != "development" and origin and origin not in CORS_ORIGINS:
        logger.warning(f"Rejected request from origin {origin}")
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content=error_response("CORS policy violation"),
        )
    return await call_next(request)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000
    logger.info(f"{request.method} {request.url.path} {response.status_code} {duration_ms:.1f}ms")
    return response


def _plain_value(value):
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    # Raw inputs may hold uploads or bytes
    return str(value)


def _validation_response(errors) -> JSONResponse:
    details = []
    for error in errors:
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path", "form")]
        details.append({
            "field": ".".join(location),
            "message": error.get("msg", ""),
            "value": _plain_value(error.get("input")),
        })
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_response("Validation failed", details=details),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(str(exc.detail), error=type(exc).__name__),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return _validation_response(exc.errors())


@app.exception_handler(ValidationError)
async def model_validation_handler(request: Request, exc: ValidationError):
    return _validation_response(exc.errors())


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning(f"Integrity error on {request.method} {request.url.path}: {str(exc.orig)}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_response("Duplicate field value entered", error="IntegrityError"),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {str(exc)}")
    content = error_response("Internal Server Error")
    if ENVIRONMENT != "production":
        content["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)


# Routers
app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(post.router, prefix="/api/posts", tags=["Posts"])
app.include_router(comment.router, prefix="/api/comments", tags=["Comments"])
# Social routes own /me/bookmarks and /{id}/follow, which must match before /{id}
app.include_router(social.router, prefix="/api/users", tags=["Social"])
app.include_router(user.router, prefix="/api/users", tags=["Users"])
app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])


@app.get("/api/health", tags=["Health"])
async def health_check():
    return {
        "success": True,
        "message": "Server is running",
        "timestamp": utcnow().isoformat(),
        "environment": ENVIRONMENT,
    }


@app.api_route("/api/{path:path}", methods=["GET", "POST", "PUT", "DELETE"], include_in_schema=False)
async def api_not_found(path: str):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content=error_response("API endpoint not found"),
    )


@app.on_event("startup")
async def startup_event():
    await create_tables()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
