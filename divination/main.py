"""FastAPI application entry point.

Divination analysis, stored results, image generation and health check.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from uuid import uuid4

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from divination.ai.providers.base import ImageProvider, LLMProvider
from divination.ai.providers.gemini import GeminiProvider
from divination.ai.providers.openai import OpenAIProvider
from divination.ai.providers.stability import StabilityProvider
from divination.ai.router import LLMRouter
from divination.config import Settings, get_settings
from divination.models import AnalyzeRequest, ImageRequest, SelectedCard
from divination.oracle.error_handler import ApiErrorHandler
from divination.oracle.poems import PoemLibrary
from divination.oracle.service import DivinationService, PoemsUnavailable
from divination.oracle.sessions import SessionStore

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@dataclass
class Services:
    """Collaborators shared by the request handlers."""

    text_provider: LLMProvider
    image_provider: ImageProvider
    library: PoemLibrary
    divination: DivinationService
    errors: ApiErrorHandler
    provider_keys: dict[str, bool]

    async def close(self) -> None:
        await self.text_provider.close()
        await self.image_provider.close()


def build_services(settings: Settings) -> Services:
    """Wire providers, router and oracle service from settings."""
    if settings.text_provider == "openai":
        text_provider: LLMProvider = OpenAIProvider(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            temperature=settings.openai_temperature,
            timeout=settings.llm_timeout_seconds,
        )
    else:
        text_provider = GeminiProvider(
            api_key=settings.google_ai_api_key,
            model=settings.google_gemini_model,
            timeout=settings.llm_timeout_seconds,
        )
    image_provider = StabilityProvider(
        api_key=settings.stability_api_key,
        model=settings.stability_model,
        default_style_preset=settings.stability_style_preset,
        timeout=settings.llm_timeout_seconds,
    )
    router = LLMRouter(
        text_provider,
        options=settings.recovery_options,
        max_attempts=settings.llm_max_attempts,
    )
    library = PoemLibrary.from_path(settings.poem_data_path)
    return Services(
        text_provider=text_provider,
        image_provider=image_provider,
        library=library,
        divination=DivinationService(router, library, SessionStore(settings.session_ttl_hours)),
        errors=ApiErrorHandler(include_details=settings.debug_errors),
        provider_keys={
            "openai": bool(settings.openai_api_key),
            "gemini": bool(settings.google_ai_api_key),
            "stability": bool(settings.stability_api_key),
        },
    )


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    """Build the application.

    Args:
        settings: Settings to use; defaults to ``get_settings()``
        services: Pre-built collaborators (tests); built from settings on startup otherwise
    """
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan: build and close collaborators."""
        settings.log_key_status()
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services(settings)

        yield

        await app.state.services.close()

    app = FastAPI(
        title=settings.app_name,
        description="Trigram divination and fortune poem matching backed by LLMs",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info(f"Request received: {request.method} {request.url.path}")
        return await call_next(request)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {"message": settings.app_name, "version": VERSION}

    @app.get("/health")
    async def health_check(request: Request) -> JSONResponse:
        """Health check: poem data and provider credentials."""
        services: Services = request.app.state.services
        text_ready = services.provider_keys.get(services.text_provider.name, False)
        healthy = services.library.loaded and text_ready
        return JSONResponse(
            status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "healthy" if healthy else "degraded",
                "poems": len(services.library),
                "text_provider": services.text_provider.name,
                "providers": {
                    name: "configured" if ok else "missing" for name, ok in services.provider_keys.items()
                },
            },
        )

    @app.post("/api/divination/analyze")
    async def analyze(body: AnalyzeRequest, request: Request) -> JSONResponse:
        """Analyze three trigram cards and match a fortune poem."""
        services: Services = request.app.state.services
        endpoint = "Divination Analyze"
        cards_raw = body.selectedCards

        def card_names() -> str:
            if not isinstance(cards_raw, list):
                return ""
            return "、".join(
                c.get("name") if isinstance(c, dict) and isinstance(c.get("name"), str) else "?"
                for c in cards_raw
            )

        def failure(error: Exception, session_id: str, context: dict) -> JSONResponse:
            payload = services.errors.handle_error(endpoint, error, context)
            payload.update(
                geminiAnalysis=None,
                matchedPoem=None,
                finalImageUrl=None,
                selectedCardNames=card_names(),
                sessionId=session_id,
                canSave=False,
            )
            return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=payload)

        if not services.library.loaded:
            return failure(
                PoemsUnavailable("Fortune poem data is not loaded"),
                str(uuid4()),
                {"step": "LoadPoemDataCheck"},
            )

        if not isinstance(cards_raw, list) or len(cards_raw) != 3:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={
                    "success": False,
                    "error": "請求數據不完整，需要三張卦象卡牌。",
                    "errorCode": "INVALID_CARD_DATA",
                },
            )
        try:
            cards = [SelectedCard.model_validate(card) for card in cards_raw]
        except ValidationError:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={
                    "success": False,
                    "error": "卡牌資訊不完整，每張卡牌需要 id 與 name。",
                    "errorCode": "INVALID_CARD_STRUCTURE",
                },
            )

        session_id = str(uuid4())
        try:
            result = await services.divination.analyze(cards, session_id)
        except Exception as e:
            return failure(
                e,
                session_id,
                {"cardNames": card_names(), "cardIds": "、".join(str(c.id) for c in cards)},
            )

        return JSONResponse(content={"success": True, **result.model_dump(mode="json")})

    @app.get("/api/divination/sessions/{session_id}")
    async def get_session(session_id: str, request: Request) -> JSONResponse:
        """Return a stored analysis result."""
        services: Services = request.app.state.services
        session = services.divination.sessions.get(session_id)
        if session is None:
            return JSONResponse(
                status_code=status.HTTP_404_NOT_FOUND,
                content={"success": False, "error": "Session not found or expired"},
            )
        return JSONResponse(
            content={
                "success": True,
                "expireAt": session.expire_at.isoformat(),
                **session.result.model_dump(mode="json"),
            }
        )

    @app.post("/api/image/generate")
    async def generate_image(body: ImageRequest, request: Request) -> JSONResponse:
        """Generate an image for a prompt."""
        services: Services = request.app.state.services
        if not isinstance(body.prompt, str) or not body.prompt.strip():
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"success": False, "imageUrl": None, "error": "缺少有效的圖像提示詞 (prompt)"},
            )
        try:
            image_url = await services.image_provider.generate_image(body.prompt)
        except Exception as e:
            payload = services.errors.handle_error(
                "Image Generation", e, {"interactionId": body.interactionId or "N/A"}
            )
            payload["imageUrl"] = None
            return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=payload)
        return JSONResponse(content={"success": True, "imageUrl": image_url})

    return app


app = create_app()
