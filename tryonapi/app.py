"""
MIT License — Try-On image generation (FastAPI)
"""

import logging
import httpx
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic_settings import BaseSettings
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.trustedhost import TrustedHostMiddleware
from starlette.middleware.httpsredirect import HTTPSRedirectMiddleware

from tryonapi.types import (
    ErrorResponse,
    GeneratedImageResponse,
    OutputMode,
    TextDescriptionResponse,
    TryOnPayload,
    TryOnResult,
)
from tryonapi.images import fetch_product_image, parse_user_photo
from tryonapi.providers.gemini import DEFAULT_MODELS, generate_with_gemini

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

GENERIC_ERROR = "Failed to generate image"
TEXT_MODE_MESSAGE = "Image generation is not available in this mode; returning a text description instead."

# ---------------- Settings ----------------

class Settings(BaseSettings):
    PORT: int = 8787
    ALLOWED_ORIGINS: str = "*"
    ALLOWED_HOSTS: str = "*"
    FORCE_HTTPS: bool = False
    GEMINI_API_KEY: str = ""
    GEMINI_API_BASE: str = "https://generativelanguage.googleapis.com"
    GEMINI_MODEL: str = ""  # Empty means the default model for OUTPUT_MODE
    OUTPUT_MODE: OutputMode = "image"
    REQUEST_TIMEOUT_S: float = 120.0
    RATE_LIMIT: str = "20/minute"
    RATE_LIMIT_ENABLED: bool = True

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def origins(self) -> list[str]:
        origins = [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]
        return origins or ["*"]

    @property
    def hosts(self) -> list[str]:
        hosts = [h.strip() for h in self.ALLOWED_HOSTS.split(",") if h.strip()]
        return hosts or ["*"]

    @property
    def model(self) -> str:
        return self.GEMINI_MODEL or DEFAULT_MODELS[self.OUTPUT_MODE]


class ConfigurationError(Exception):
    pass

# ---------------- Utilities ----------------

def _success_body(result: TryOnResult) -> dict:
    if result.kind == "description":
        return TextDescriptionResponse(description=result.text, message=TEXT_MODE_MESSAGE).model_dump()
    return GeneratedImageResponse(generatedImageUrl=result.url).model_dump()


def _error_response(detail: str, status_code: int, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(ErrorResponse(error=detail).model_dump(), status_code=status_code, headers=headers)


async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = "Method not allowed" if exc.status_code == 405 else exc.detail
    return _error_response(detail, exc.status_code, exc.headers)


async def _validation_exception_handler(request: Request, exc: RequestValidationError):
    # Only the error location and kind; pydantic's "input" carries the raw body
    errors = [{k: e.get(k) for k in ("loc", "type", "msg")} for e in exc.errors()]
    logger.info(f"Rejected request body: {errors}")
    return _error_response("Invalid request body", 400)

# ---------------- App & Middleware ----------------

def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the app around an explicit Settings instance.

    ``transport`` is handed to every outbound httpx client, which lets callers
    route the product fetch and the provider call somewhere other than the
    network.
    """
    settings = settings or Settings()

    app = FastAPI(title="Try-On Image Generation (FastAPI)")
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.origins,
        allow_credentials=True,
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["*"],
    )
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.hosts)
    if settings.FORCE_HTTPS:
        app.add_middleware(HTTPSRedirectMiddleware)

    limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)

    @app.on_event("startup")
    async def _startup():
        logger.info(f"GEMINI_API_KEY configured: {bool(settings.GEMINI_API_KEY)}")
        logger.info(f"Output mode: {settings.OUTPUT_MODE}, model: {settings.model}")
        logger.info(f"Allowed origins: {settings.origins}")

    # ---------------- Routes ----------------

    @app.get("/health")
    def health():
        return {
            "ok": True,
            "provider_configured": bool(settings.GEMINI_API_KEY),
            "output_mode": settings.OUTPUT_MODE,
            "allowed_origins": settings.origins,
        }

    @app.post("/api/generateImage")
    @limiter.limit(settings.RATE_LIMIT)
    async def generate_image(request: Request, payload: Optional[TryOnPayload] = None):
        logger.info(f"Generate request from {request.client.host if request.client else 'unknown'}")

        if payload is None:
            payload = TryOnPayload()
        missing = payload.missing_fields()
        if missing:
            raise HTTPException(status_code=400, detail=f"Missing required fields ({', '.join(missing)})")

        try:
            if not settings.GEMINI_API_KEY:
                raise ConfigurationError("GEMINI_API_KEY not configured")

            # Image generation routinely outlasts httpx's 5s default timeout
            async with httpx.AsyncClient(transport=transport, timeout=settings.REQUEST_TIMEOUT_S) as client:
                product_image = await fetch_product_image(client, payload.productImage)
                user_image = parse_user_photo(payload.userPhoto)
                logger.info(
                    f"Assembled payload: user photo {user_image.size} chars ({user_image.mime_type}), "
                    f"product image {product_image.size} chars ({product_image.mime_type})"
                )

                result = await generate_with_gemini(
                    client,
                    api_key=settings.GEMINI_API_KEY,
                    model=settings.model,
                    prompt=payload.prompt,
                    images=[user_image, product_image],
                    mode=settings.OUTPUT_MODE,
                    api_base=settings.GEMINI_API_BASE,
                )
        except Exception as e:
            logger.exception(f"Error generating image: {e}")
            raise HTTPException(status_code=500, detail=GENERIC_ERROR)

        logger.info(f"Generation completed ({result.kind})")
        return _success_body(result)

    return app


app = create_app()


def main():
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)


if __name__ == "__main__":
    main()
