from fastapi import FastAPI, Depends, HTTPException, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from typing import List, Optional
from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Actor, CreateRFQData, RFQ, RespondRFQ, SubmitQuote, SweepResult
from .adapters.catalog import SQLModelCatalog
from .adapters.db_repository import SQLModelRepository
from .adapters.identity import StaticTokenIdentityProvider, parse_actor
from .adapters.notifier import build_notifier
from .service.errors import ForbiddenError, RFQError, RFQValidationError
from .service.ports import AbstractCatalog, AbstractIdentityProvider, AbstractNotifier, AbstractRepository
from .service.rfq_service import RFQService
from shared.models_db import RFQStatus
from shared.settings import settings
from shared.logging import get_logger
from shared.db import create_db_and_tables, close_db_connection, get_async_session

logger = get_logger(__name__)

_ERROR_STATUS_CODES = {
    "validation_error": 422,
    "not_found": 404,
    "forbidden": 403,
    "conflict": 409,
    "invalid_transition": 409,
}

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("RFQ Desk starting up...")
    await create_db_and_tables()
    yield
    logger.info("RFQ Desk shutting down...")
    await close_db_connection()

app = FastAPI(
    title=settings.APP_NAME,
    version="v1",
    lifespan=lifespan
)

@app.exception_handler(RFQError)
async def rfq_error_handler(request: Request, exc: RFQError) -> JSONResponse:
    status_code = _ERROR_STATUS_CODES.get(exc.kind, 400)
    logger.info(f"{request.method} {request.url.path} -> {status_code} {exc.kind}: {exc.detail}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())

def summarize_validation_errors(errors) -> str:
    """One line per failed field, e.g. "price: Input should be greater than 0"."""
    parts = []
    for error in errors:
        field = ".".join(str(part) for part in error.get("loc", ()) if part != "body") or "body"
        parts.append(f"{field}: {error.get('msg', 'invalid value')}")
    return "; ".join(parts)

@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Schema failures share the validation_error shape raised by the service
    error = RFQValidationError(summarize_validation_errors(exc.errors()), rfq_id=request.path_params.get("rfq_id"))
    return await rfq_error_handler(request, error)


# --- Dependencies ---

def get_db_repository(session: AsyncSession = Depends(get_async_session)) -> AbstractRepository:
    return SQLModelRepository(session)

def get_catalog(session: AsyncSession = Depends(get_async_session)) -> AbstractCatalog:
    return SQLModelCatalog(session)

def get_notifier() -> AbstractNotifier:
    return build_notifier(settings.NOTIFY_WEBHOOK_URL, settings.NOTIFY_WEBHOOK_TOKEN)

def get_identity_provider() -> AbstractIdentityProvider:
    return StaticTokenIdentityProvider(settings.AUTH_TOKENS)

def get_rfq_service(
    db_repo: AbstractRepository = Depends(get_db_repository),
    catalog: AbstractCatalog = Depends(get_catalog),
    notifier: AbstractNotifier = Depends(get_notifier),
    session: AsyncSession = Depends(get_async_session),
) -> RFQService:
    # FastAPI caches get_async_session per request, so repository, catalog and service share one session
    return RFQService(db_repository=db_repo, catalog=catalog, notifier=notifier, session=session)

async def get_current_actor(
    authorization_header: Optional[str] = Header(None, alias="Authorization"),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    x_user_role: Optional[str] = Header(None, alias="X-User-Role"),
    identity: AbstractIdentityProvider = Depends(get_identity_provider),
) -> Actor:
    if settings.TEST_AUTH_BYPASS.lower() == 'true' and x_user_id:
        logger.warning(f"Auth bypassed via TEST_AUTH_BYPASS=true for user {x_user_id}")
        try:
            return parse_actor(f"{x_user_id}:{x_user_role or ''}")
        except ValueError as e:
            raise HTTPException(status_code=401, detail=str(e))

    if not authorization_header:
        logger.warning("Missing Authorization header")
        raise HTTPException(status_code=401, detail="Not authenticated")

    scheme, _, token = authorization_header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        logger.warning("Malformed Authorization header")
        raise HTTPException(status_code=401, detail="Invalid authentication scheme")

    actor = identity.resolve(token)
    if actor is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return actor

def require_staff(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_staff:
        raise ForbiddenError(f"Role {actor.role.value} cannot perform this action")
    return actor

def ensure_visible(rfq: RFQ, actor: Actor) -> RFQ:
    if rfq.userId != actor.userId and not actor.can_view_all:
        raise ForbiddenError("Not allowed to view this RFQ", rfq_id=rfq.id)
    return rfq


# --- Routes ---

@app.get("/health", include_in_schema=False)
async def health():
    return {"status": "ok", "app": settings.APP_NAME}

@app.post("/rfqs", response_model=RFQ, status_code=201)
async def create_rfq(
    payload: CreateRFQData,
    actor: Actor = Depends(get_current_actor),
    rfq_service: RFQService = Depends(get_rfq_service),
):
    logger.info(f"Received RFQ from {actor.userId}. Items: {len(payload.items)}")
    return await rfq_service.create_rfq(actor.userId, payload)

@app.get("/rfqs", response_model=List[RFQ])
async def list_rfqs(
    status: Optional[RFQStatus] = None,
    actor: Actor = Depends(get_current_actor),
    rfq_service: RFQService = Depends(get_rfq_service),
):
    # Staff and sellers see every RFQ; buyers only their own
    user_id = None if actor.can_view_all else actor.userId
    return await rfq_service.list_rfqs(status=status, user_id=user_id)

@app.post("/rfqs/sweep", response_model=SweepResult)
async def sweep_expired(
    actor: Actor = Depends(require_staff),
    rfq_service: RFQService = Depends(get_rfq_service),
):
    logger.info(f"Expiry sweep requested by {actor.userId}")
    return SweepResult(expired=await rfq_service.sweep_expired())

@app.get("/rfqs/{rfq_id}", response_model=RFQ)
async def get_rfq(
    rfq_id: str,
    actor: Actor = Depends(get_current_actor),
    rfq_service: RFQService = Depends(get_rfq_service),
):
    return ensure_visible(await rfq_service.get_rfq(rfq_id), actor)

@app.get("/rfqs/by-number/{rfq_number}", response_model=RFQ)
async def get_rfq_by_number(
    rfq_number: str,
    actor: Actor = Depends(get_current_actor),
    rfq_service: RFQService = Depends(get_rfq_service),
):
    return ensure_visible(await rfq_service.get_rfq_by_number(rfq_number), actor)

@app.post("/rfqs/{rfq_id}/quote", response_model=RFQ)
async def submit_quote(
    rfq_id: str,
    payload: SubmitQuote,
    actor: Actor = Depends(get_current_actor),
    rfq_service: RFQService = Depends(get_rfq_service),
):
    return await rfq_service.submit_quote(rfq_id, actor, payload)

@app.post("/rfqs/{rfq_id}/respond", response_model=RFQ)
async def respond(
    rfq_id: str,
    payload: RespondRFQ,
    actor: Actor = Depends(get_current_actor),
    rfq_service: RFQService = Depends(get_rfq_service),
):
    return await rfq_service.respond(rfq_id, actor.userId, payload.decision)

@app.post("/rfqs/{rfq_id}/expire", response_model=RFQ)
async def expire_if_due(
    rfq_id: str,
    actor: Actor = Depends(require_staff),
    rfq_service: RFQService = Depends(get_rfq_service),
):
    return await rfq_service.expire_if_due(rfq_id)
