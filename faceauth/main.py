"""
Face Auth API

Registers, authenticates and verifies faces using AWS Rekognition for
detection and search, S3 for image storage and SQL for the user registry.

Endpoints (under API_PREFIX, default /api/face):
- POST /register - Register a named face
- POST /authenticate - Identify a face
- POST /verify/{user_id} - Verify a face against one user
- GET /users - List users
- GET /users/{user_id} - Get a user
- DELETE /users/{user_id} - Delete a user and their face data
- GET /health - Liveness check
"""
import math
import logging
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from fastapi import APIRouter, FastAPI, File, UploadFile, Form, Query, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException

from faceauth.config import (
    API_TITLE,
    API_DESCRIPTION,
    API_VERSION,
    API_PREFIX,
    HOST,
    PORT,
    LOG_LEVEL,
    DEFAULT_SIMILARITY_THRESHOLD,
    DEFAULT_PAGE_LIMIT,
    MAX_PAGE_LIMIT,
    MAX_IMAGE_BYTES,
    SUPPORTED_FORMATS,
    SUPPORTED_CONTENT_TYPES,
    GENERIC_CONTENT_TYPES
)
from faceauth.context import AppContext, build_context, get_context
from faceauth.errors import APIError, BadRequestError
from faceauth.schemas import (
    RegisterResponse,
    AuthenticateResponse,
    VerifyResponse,
    UserListResponse,
    UserDetailResponse,
    DeleteResponse,
    HealthResponse,
    ErrorResponse
)
from faceauth.services import FaceAuthService

# Configure logging
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


async def get_db(context: AppContext = Depends(get_context)) -> AsyncSession:
    """Dependency to get database session."""
    async with context.database.session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


def get_service(
    context: AppContext = Depends(get_context),
    db: AsyncSession = Depends(get_db)
) -> FaceAuthService:
    return FaceAuthService(context, db)


@contextmanager
def failure_envelope(error: str, **extra):
    """Turn unexpected workflow failures into a 500 with the error detail."""
    try:
        yield
    except APIError:
        raise
    except Exception as e:
        logger.error(f"{error}: {e}", exc_info=True)
        raise APIError(error, status_code=500, details=str(e), **extra) from e


async def read_image(image: Optional[UploadFile], **extra) -> bytes:
    """Validate an uploaded image and return its bytes."""
    if image is None or not image.filename:
        raise BadRequestError("Face image is required", **extra)

    # The declared content type decides; the extension only when none was sent
    content_type = (image.content_type or "").lower()
    if content_type and content_type not in GENERIC_CONTENT_TYPES:
        if content_type not in SUPPORTED_CONTENT_TYPES:
            raise BadRequestError("Unsupported file format. Only JPEG, PNG and WebP images are allowed", **extra)
    else:
        ext = "." + image.filename.lower().rsplit(".", 1)[-1] if "." in image.filename else ""
        if ext not in SUPPORTED_FORMATS:
            raise BadRequestError(
                f"Unsupported file format. Supported: {', '.join(sorted(SUPPORTED_FORMATS))}",
                **extra
            )

    image_bytes = await image.read()
    if len(image_bytes) == 0:
        raise BadRequestError("Empty image file", **extra)
    if len(image_bytes) > MAX_IMAGE_BYTES:
        raise BadRequestError(
            f"Image too large. Maximum size is {MAX_IMAGE_BYTES // (1024 * 1024)}MB",
            **extra
        )
    return image_bytes


def parse_threshold(raw: Optional[str], **extra) -> float:
    """Similarity threshold from a form field; missing, zero or non-numeric means the default."""
    try:
        threshold = float(raw)
    except (TypeError, ValueError):
        return DEFAULT_SIMILARITY_THRESHOLD
    if threshold == 0:
        return DEFAULT_SIMILARITY_THRESHOLD
    if math.isnan(threshold) or not 0 <= threshold <= 100:
        raise BadRequestError("Threshold must be between 0 and 100", **extra)
    return threshold


def parse_page(raw_limit: Optional[str], raw_skip: Optional[str]) -> Tuple[int, int]:
    """Pagination from query strings; unusable values fall back to the defaults."""
    try:
        limit = int(raw_limit)
    except (TypeError, ValueError):
        limit = DEFAULT_PAGE_LIMIT
    if limit < 1:
        limit = DEFAULT_PAGE_LIMIT
    try:
        skip = int(raw_skip)
    except (TypeError, ValueError):
        skip = 0
    return min(limit, MAX_PAGE_LIMIT), max(skip, 0)


router = APIRouter()


# ============================================================================
# REGISTER
# ============================================================================
@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=201,
    responses={
        400: {"model": ErrorResponse, "description": "Missing input or not exactly one face"},
        409: {"model": ErrorResponse, "description": "Face already registered"}
    },
    summary="Register a new face",
    description="""
    Register a face under a user name.

    **Pipeline:**
    1. Face detection (exactly one face required)
    2. Duplicate check against the collection (similarity >= 95)
    3. Upload image to S3
    4. Index the stored image in Rekognition
    5. Store the user in the registry
    """
)
async def register(
    name: Optional[str] = Form(None, description="User name"),
    image: Optional[UploadFile] = File(None, description="Face image (JPEG, PNG, WebP)"),
    service: FaceAuthService = Depends(get_service)
):
    if not name or not name.strip():
        raise BadRequestError("Name is required")
    image_bytes = await read_image(image)

    with failure_envelope("Failed to register face"):
        user = await service.register(name, image_bytes, image.content_type or "image/jpeg")

    return RegisterResponse(message="Face registered successfully", data=user)


# ============================================================================
# AUTHENTICATE
# ============================================================================
@router.post(
    "/authenticate",
    response_model=AuthenticateResponse,
    responses={
        400: {"model": ErrorResponse, "description": "No face detected"},
        401: {"model": ErrorResponse, "description": "Face not recognized"}
    },
    summary="Authenticate a face against all registered faces"
)
async def authenticate(
    image: Optional[UploadFile] = File(None, description="Face image to authenticate"),
    threshold: Optional[str] = Form(None, description="Similarity threshold (default: 80)"),
    service: FaceAuthService = Depends(get_service)
):
    image_bytes = await read_image(image, authenticated=False)
    similarity_threshold = parse_threshold(threshold, authenticated=False)

    with failure_envelope("Authentication failed", authenticated=False):
        user = await service.authenticate(image_bytes, similarity_threshold)

    return AuthenticateResponse(message="Authentication successful", data=user)


# ============================================================================
# VERIFY
# ============================================================================
@router.post(
    "/verify/{user_id}",
    response_model=VerifyResponse,
    responses={
        400: {"model": ErrorResponse, "description": "No face detected"},
        401: {"model": ErrorResponse, "description": "Face does not match"},
        404: {"model": ErrorResponse, "description": "User not found"}
    },
    summary="Verify that a face matches a specific registered user"
)
async def verify(
    user_id: str,
    image: Optional[UploadFile] = File(None, description="Face image to verify"),
    threshold: Optional[str] = Form(None, description="Similarity threshold (default: 80)"),
    service: FaceAuthService = Depends(get_service)
):
    image_bytes = await read_image(image, verified=False)
    similarity_threshold = parse_threshold(threshold, verified=False)

    with failure_envelope("Verification failed", verified=False):
        user = await service.verify(user_id, image_bytes, similarity_threshold)

    return VerifyResponse(message="Face verified successfully", data=user)


# ============================================================================
# USERS
# ============================================================================
@router.get(
    "/users",
    response_model=UserListResponse,
    summary="List registered users",
    description="Newest first, with offset pagination."
)
async def list_users(
    limit: Optional[str] = Query(None, description=f"Maximum number of users to return (default {DEFAULT_PAGE_LIMIT})"),
    skip: Optional[str] = Query(None, description="Number of users to skip"),
    service: FaceAuthService = Depends(get_service)
):
    limit, skip = parse_page(limit, skip)
    with failure_envelope("Failed to retrieve users"):
        page = await service.list_users(limit=limit, skip=skip)
    return UserListResponse(data=page)


@router.get(
    "/users/{user_id}",
    response_model=UserDetailResponse,
    responses={404: {"model": ErrorResponse, "description": "User not found"}},
    summary="Get a specific user"
)
async def get_user(user_id: str, service: FaceAuthService = Depends(get_service)):
    with failure_envelope("Failed to retrieve user"):
        user = await service.get_user(user_id)
    return UserDetailResponse(data=user)


@router.delete(
    "/users/{user_id}",
    response_model=DeleteResponse,
    responses={404: {"model": ErrorResponse, "description": "User not found"}},
    summary="Delete a user and their face data",
    description="Removes the indexed face, the stored image and then the user record."
)
async def delete_user(user_id: str, service: FaceAuthService = Depends(get_service)):
    with failure_envelope("Failed to delete user"):
        user = await service.delete_user(user_id)
    return DeleteResponse(message="User deleted successfully", data=user)


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(
        message="Face Auth API is running",
        timestamp=datetime.now(timezone.utc)
    )


def create_app(context_factory: Callable[[], AppContext] = build_context) -> FastAPI:
    """Build the FastAPI application. The context is created at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        logger.info("Starting Face Auth API...")
        context = context_factory()
        await context.startup()
        app.state.context = context
        yield
        app.state.context = None
        await context.shutdown()
        logger.info("Shutting down Face Auth API...")

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=API_VERSION,
        lifespan=lifespan
    )
    app.state.context = None

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def no_cache(request: Request, call_next):
        response = await call_next(request)
        response.headers.update(NO_CACHE_HEADERS)
        return response

    app.include_router(router, prefix=API_PREFIX, tags=["face"])

    @app.get("/api/info", include_in_schema=False)
    async def info():
        """API info and endpoint map."""
        return {
            "success": True,
            "message": API_TITLE,
            "version": API_VERSION,
            "endpoints": {
                "health": f"GET {API_PREFIX}/health",
                "register": f"POST {API_PREFIX}/register",
                "authenticate": f"POST {API_PREFIX}/authenticate",
                "verify": f"POST {API_PREFIX}/verify/{{userId}}",
                "getUsers": f"GET {API_PREFIX}/users",
                "getUser": f"GET {API_PREFIX}/users/{{userId}}",
                "deleteUser": f"DELETE {API_PREFIX}/users/{{userId}}"
            },
            "documentation": "/docs"
        }

    # Exception handlers
    @app.exception_handler(APIError)
    async def api_error_handler(request, exc: APIError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_content())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request, exc):
        """Custom HTTP exception handler."""
        error = "Endpoint not found" if exc.status_code == 404 else str(exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": error}
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": "Invalid request",
                "details": [
                    {"loc": list(err.get("loc", [])), "msg": err.get("msg")}
                    for err in exc.errors()
                ]
            }
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request, exc):
        """General exception handler."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Internal server error"
            }
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=HOST, port=PORT)
