"""Memory Deck API - FastAPI application."""

from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import FastAPI, Header, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from packages.common.config import get_settings
from packages.common.database import close_pool
from packages.common.exceptions import (
    AuthorizationError,
    ConflictError,
    ContentGenerationError,
    DataIntegrityError,
    MemoryDeckError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from packages.common.logging import clear_request_id, configure_logging, get_logger, set_request_id
from packages.common.validation import check_requester
from packages.content.generator import get_content_generator
from packages.decks.service import MAX_GENERATED_CARDS, ChapterContent, DeckService
from packages.jobs.service import (
    JobBackendUnavailableError,
    JobRecord,
    close_job_manager,
    get_job_manager,
)
from packages.protection.service import close_data_protection, get_data_protection
from packages.review.selector import DEFAULT_LIMIT, DueCardSelector
from packages.review.service import ReviewService
from packages.srs.models import CardDraft, coerce_datetime
from packages.store.client import get_store_client, reset_store_client

logger = get_logger(module=__name__)

VERSION = "0.1.0"


class CreateDeckRequest(BaseModel):
    """Request body for deck creation."""

    user_id: str
    course_id: str
    title: str
    description: str | None = None


class GenerateDeckRequest(BaseModel):
    """Request body for deck generation from chapter content."""

    user_id: str
    course_id: str
    title: str
    description: str | None = None
    chapters: list[ChapterContent]
    max_cards: int = MAX_GENERATED_CARDS


class AlternativesRequest(BaseModel):
    """Request body for alternative phrasings of a card."""

    user_id: str
    question: str
    answer: str
    count: int = 3


class BatchAddRequest(BaseModel):
    """Request body for batch card insert."""

    cards: list[CardDraft] = Field(..., min_length=1)


class UpdateCardRequest(BaseModel):
    """Request body for card edits. Omitted fields are unchanged."""

    question: str | None = None
    answer: str | None = None
    difficulty_level: int | None = None


class ReviewRequest(BaseModel):
    """Request body for a review submission."""

    rating: int = Field(..., description="1=Again, 2=Hard, 3=Good, 4=Easy")
    is_correct: bool | None = None
    thinking_time: float | None = Field(default=None, description="Seconds")
    confidence: float | None = Field(default=None, description="0 to 1")


class RestoreRequest(BaseModel):
    """Request body for restoring a backup."""

    timestamp: str


class RepairRequest(BaseModel):
    """Request body for a synchronous repair."""

    user_id: str | None = None


class JobRequest(BaseModel):
    """Request body for background integrity jobs."""

    user_id: str | None = None
    run_at: datetime | None = None


def ok(message: str, data: Any = None, status_code: int = 200) -> JSONResponse:
    """Success envelope."""
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({"message": message, "data": data}),
    )


def error_response(status_code: int, message: str, error: Any) -> JSONResponse:
    """Failure envelope."""
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({"message": message, "error": error}),
    )


_STATUS_BY_ERROR: list[tuple[type[MemoryDeckError], int]] = [
    (ValidationError, 400),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (JobBackendUnavailableError, 503),
    (ContentGenerationError, 502),
]


def _deck_service() -> DeckService:
    settings = get_settings()
    return DeckService(
        get_store_client(),
        get_data_protection(),
        get_content_generator(settings),
    )


def _review_service() -> ReviewService:
    return ReviewService(get_store_client(), get_data_protection())


def _job_payload(record: JobRecord) -> dict[str, Any]:
    data = record.to_dict()
    data["poll_url"] = f"/jobs/{record.job_id}"
    return data


def _parse_backup_timestamp(value: str) -> datetime:
    try:
        parsed = coerce_datetime(value)
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError(
            "timestamp must be an ISO-8601 datetime", context={"field": "timestamp"}
        )
    return parsed


def _integrity_scope(user_id: str | None, requester_id: str | None) -> str | None:
    """Decks an integrity request covers: a named user, else the caller's own, else every deck."""
    if user_id is None:
        return requester_id
    check_requester(requester_id, user_id)
    return user_id


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan handler for startup/shutdown."""
    # Startup
    settings = get_settings()
    configure_logging(debug=settings.debug, json_output=not settings.debug)
    app.state.settings = settings
    yield
    # Shutdown
    await close_data_protection()
    await close_job_manager()
    await close_pool()
    reset_store_client()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Memory Deck",
        description="Spaced-repetition flashcard scheduling with data-integrity protection",
        version=VERSION,
        lifespan=lifespan,
        debug=settings.debug,
    )

    @app.middleware("http")
    async def request_id_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = set_request_id(request.headers.get("X-Request-Id"))
        try:
            response = await call_next(request)
        finally:
            clear_request_id()
        response.headers["X-Request-Id"] = request_id
        return response

    @app.exception_handler(MemoryDeckError)
    async def handle_app_error(request: Request, exc: MemoryDeckError) -> JSONResponse:
        error_type = type(exc).__name__
        if isinstance(exc, DataIntegrityError):
            logger.error("data_integrity_violation", violations=exc.violations, **exc.context)
            return error_response(500, str(exc), {"type": error_type, "violations": exc.violations})
        if isinstance(exc, TransientStoreError):
            logger.error("store_unavailable", path=request.url.path, error=str(exc))
            return error_response(
                500, "Storage temporarily unavailable, please retry", {"type": "StoreUnavailable"}
            )
        for error_cls, status_code in _STATUS_BY_ERROR:
            if isinstance(exc, error_cls):
                logger.info(
                    "request_rejected", status=status_code, error_type=error_type, error=str(exc)
                )
                return error_response(status_code, str(exc), {"type": error_type})

        logger.error("request_failed", path=request.url.path, error_type=error_type, error=str(exc))
        return error_response(500, "Internal server error", {"type": error_type})

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        details = [
            {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
            for error in exc.errors()
        ]
        return error_response(
            400, "Invalid request", {"type": "ValidationError", "details": details}
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_exception", path=request.url.path)
        error: dict[str, Any] = {"type": "InternalError"}
        if get_settings().debug:
            error["detail"] = str(exc)
        return error_response(500, "Internal server error", error)

    @app.get("/health", response_class=JSONResponse)
    async def health() -> dict[str, Any]:
        """Health check endpoint.

        Returns basic status and configuration info.
        Does not check store connectivity (use /ready for that).
        """
        current = get_settings()
        return {
            "status": "healthy",
            "version": VERSION,
            "services": {
                "store": {"configured": True, "backend": current.store_backend},
                "content": {"configured": True, "provider": current.content_provider},
            },
        }

    @app.get("/ready", response_class=JSONResponse)
    async def ready() -> dict[str, Any]:
        """Readiness check - verifies the card store is reachable."""
        try:
            store_ok = await get_store_client().ping()
        except MemoryDeckError:
            logger.warning("ready_check_store_failed")
            store_ok = False

        return {
            "status": "ready" if store_ok else "not_ready",
            "checks": {"store": "ok" if store_ok else "failed"},
        }

    # Decks

    @app.post("/decks")
    async def create_deck(
        request: CreateDeckRequest,
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        deck = await _deck_service().create_deck(
            request.user_id,
            request.course_id,
            request.title,
            request.description,
            requester_id=x_user_id,
        )
        return ok("Deck created successfully", deck, status_code=201)

    @app.post("/decks/generate")
    async def generate_deck(
        request: GenerateDeckRequest,
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        result = await _deck_service().generate_deck(
            request.user_id,
            request.course_id,
            request.title,
            request.chapters,
            request.max_cards,
            description=request.description,
            requester_id=x_user_id,
        )
        return ok(
            "Cards generated successfully",
            {
                "deck": result.deck,
                "cards_generated": result.cards_generated,
                "total_potential_cards": result.total_candidates,
                "ai_chapters": result.ai_chapters,
                "template_chapters": result.template_chapters,
            },
            status_code=201,
        )

    @app.post("/decks/alternatives")
    async def generate_alternatives(
        request: AlternativesRequest,
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        check_requester(x_user_id, request.user_id)
        alternatives = await _deck_service().generate_alternatives(
            request.question, request.answer, request.count
        )
        return ok(
            "Alternatives generated successfully",
            {
                "alternatives": alternatives,
                "original_question": request.question,
                "original_answer": request.answer,
            },
        )

    @app.get("/decks/{user_id}")
    async def list_decks(
        user_id: str,
        course_id: str | None = None,
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        decks = await _deck_service().list_decks(
            user_id, course_id=course_id, requester_id=x_user_id
        )
        return ok("Decks retrieved successfully", decks)

    @app.get("/decks/{user_id}/due-cards")
    async def due_cards(
        user_id: str,
        deck_id: str | None = None,
        course_id: str | None = None,
        limit: int = DEFAULT_LIMIT,
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        result = await DueCardSelector(get_store_client()).get_due_cards(
            user_id,
            deck_id=deck_id,
            course_id=course_id,
            limit=limit,
            requester_id=x_user_id,
        )
        return ok("Due cards retrieved successfully", result)

    @app.get("/decks/{user_id}/{deck_id}")
    async def get_deck(
        user_id: str,
        deck_id: str,
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        deck = await _deck_service().get_deck(deck_id, user_id, requester_id=x_user_id)
        return ok("Deck retrieved successfully", deck)

    @app.delete("/decks/{user_id}/{deck_id}")
    async def delete_deck(
        user_id: str,
        deck_id: str,
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        await _deck_service().delete_deck(deck_id, user_id, requester_id=x_user_id)
        return ok("Deck deleted successfully", {"deck_id": deck_id})

    @app.get("/decks/{user_id}/{deck_id}/status")
    async def deck_status(
        user_id: str,
        deck_id: str,
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        status = await _deck_service().deck_status(deck_id, user_id, requester_id=x_user_id)
        return ok("Deck status retrieved successfully", status)

    # Cards

    @app.post("/decks/{user_id}/{deck_id}/cards")
    async def add_card(
        user_id: str,
        deck_id: str,
        request: CardDraft,
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        card = await _deck_service().add_card(deck_id, user_id, request, requester_id=x_user_id)
        return ok("Card added successfully", card, status_code=201)

    @app.post("/decks/{user_id}/{deck_id}/cards/batch")
    async def add_cards(
        user_id: str,
        deck_id: str,
        request: BatchAddRequest,
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        result = await _deck_service().add_cards(
            deck_id, user_id, request.cards, requester_id=x_user_id
        )
        return ok(
            f"Added {len(result.added)} cards",
            {
                "added": result.added,
                "added_count": len(result.added),
                "skipped_duplicates": result.skipped_duplicates,
            },
            status_code=201,
        )

    @app.put("/decks/{user_id}/{deck_id}/cards/{card_id}")
    async def update_card(
        user_id: str,
        deck_id: str,
        card_id: str,
        request: UpdateCardRequest,
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        card = await _deck_service().update_card(
            deck_id,
            user_id,
            card_id,
            question=request.question,
            answer=request.answer,
            difficulty_level=request.difficulty_level,
            requester_id=x_user_id,
        )
        return ok("Card updated successfully", card)

    @app.delete("/decks/{user_id}/{deck_id}/cards/{card_id}")
    async def delete_card(
        user_id: str,
        deck_id: str,
        card_id: str,
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        await _deck_service().delete_card(deck_id, user_id, card_id, requester_id=x_user_id)
        return ok("Card deleted successfully", {"card_id": card_id})

    @app.post("/decks/{user_id}/{deck_id}/cards/{card_id}/review")
    async def submit_review(
        user_id: str,
        deck_id: str,
        card_id: str,
        request: ReviewRequest,
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        result = await _review_service().submit_review(
            deck_id,
            user_id,
            card_id,
            request.rating,
            is_correct=request.is_correct,
            thinking_time=request.thinking_time,
            confidence=request.confidence,
            requester_id=x_user_id,
        )
        return ok("Review submitted successfully", result)

    # Backups

    @app.get("/decks/{user_id}/{deck_id}/backups")
    async def backup_history(
        user_id: str,
        deck_id: str,
        limit: int | None = None,
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        history_limit = limit if limit is not None else get_settings().backup_history_limit
        if history_limit < 1:
            raise ValidationError("limit must be positive", context={"field": "limit"})
        records = _deck_service().backup_history(
            user_id, deck_id, history_limit, requester_id=x_user_id
        )
        return ok("Backup history retrieved successfully", [r.summary() for r in records])

    @app.post("/decks/{user_id}/{deck_id}/backups/restore")
    async def restore_backup(
        user_id: str,
        deck_id: str,
        request: RestoreRequest,
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        timestamp = _parse_backup_timestamp(request.timestamp)
        deck = await _deck_service().restore_deck(
            user_id, deck_id, timestamp, requester_id=x_user_id
        )
        return ok("Deck restored successfully", deck)

    # Integrity

    @app.get("/integrity/health")
    async def integrity_health(
        user_id: str | None = None,
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        scope = _integrity_scope(user_id, x_user_id)
        summary = await get_data_protection().health_summary(scope)
        return ok("Data health summary", summary)

    @app.post("/integrity/repair")
    async def integrity_repair(
        request: RepairRequest,
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        scope = _integrity_scope(request.user_id, x_user_id)
        repaired = await get_data_protection().checker.repair(scope)
        return ok(f"Repaired {repaired} decks", {"repaired_decks": repaired})

    # Background jobs

    @app.post("/jobs/integrity")
    async def enqueue_integrity_job(
        request: JobRequest,
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        scope = _integrity_scope(request.user_id, x_user_id)
        manager = await get_job_manager()
        record = await manager.enqueue_integrity_job({"user_id": scope}, run_at=request.run_at)
        return ok("Job accepted", _job_payload(record), status_code=202)

    @app.post("/jobs/repair")
    async def enqueue_repair_job(
        request: JobRequest,
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        scope = _integrity_scope(request.user_id, x_user_id)
        manager = await get_job_manager()
        record = await manager.enqueue_repair_job({"user_id": scope}, run_at=request.run_at)
        return ok("Job accepted", _job_payload(record), status_code=202)

    @app.get("/jobs/{job_id}")
    async def get_job(job_id: str) -> JSONResponse:
        manager = await get_job_manager()
        record = await manager.get_job(job_id)
        if record is None:
            raise NotFoundError(f"Job not found: {job_id}")
        return ok("Job retrieved successfully", _job_payload(record))

    @app.post("/jobs/{job_id}/cancel")
    async def cancel_job(job_id: str) -> JSONResponse:
        manager = await get_job_manager()
        record = await manager.cancel_job(job_id)
        if record is None:
            raise NotFoundError(f"Job not found: {job_id}")
        return ok("Cancellation processed", _job_payload(record))

    return app


# Application instance for uvicorn
app = create_app()
