import logging
import tomllib
from typing import Optional

import pydantic
from fastapi import APIRouter, Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session, sessionmaker

from auth import AUTH_COOKIE, generate_token, token_from_headers, verify_token
from config import Settings, get_settings
from database import create_db_engine, create_session_factory
from errors import (
    AuthorizationError,
    DuplicateUserError,
    MalformedInputError,
    StoreError,
    ValidationError,
)
from extraction import ExtractionProvider, TextPatternExtractor
from models import TransactionType
from periods import DEFAULT_RANGE, local_now
from presenters import (
    present_analytics,
    present_import,
    present_listing,
    present_receipt,
    present_transaction,
    present_user,
)
from schemas import LoginIn, RegisterIn
from services import (
    CleanupService,
    ImportService,
    MetricsService,
    ReceiptService,
    TransactionQuery,
    TransactionService,
    UserService,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _load_app_version() -> str:
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except (OSError, ValueError):
        return "unknown"


APP_VERSION = _load_app_version()

router = APIRouter(prefix="/api")


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def _authorize(request: Request) -> int:
    settings = request.app.state.settings
    token = token_from_headers(
        request.headers.get("authorization"), request.cookies.get(AUTH_COOKIE)
    )
    if not token:
        raise AuthorizationError("Authentication required")
    user_id = verify_token(settings, token)
    if user_id is None:
        raise AuthorizationError("Invalid token")
    return user_id


def current_user_id(request: Request) -> int:
    try:
        return _authorize(request)
    except AuthorizationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


async def json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError as exc:
        raise MalformedInputError("Invalid request format") from exc
    if not isinstance(body, dict):
        raise MalformedInputError("Invalid request format")
    return body


def _int_param(request: Request, name: str) -> Optional[int]:
    raw = request.query_params.get(name)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def query_from_request(request: Request) -> TransactionQuery:
    type_param = request.query_params.get("type")
    txn_type = None
    if type_param and type_param != "all":
        try:
            txn_type = TransactionType(type_param)
        except ValueError:
            txn_type = None
    return TransactionQuery(
        time_range=request.query_params.get("timeRange") or DEFAULT_RANGE,
        type=txn_type,
        category=request.query_params.get("category") or None,
        page=_int_param(request, "page"),
        limit=_int_param(request, "limit"),
    )


async def read_upload(upload: UploadFile, settings: Settings) -> bytes:
    content = await upload.read()
    if not content:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(content) > settings.max_upload_bytes:
        max_mb = settings.max_upload_bytes // (1024 * 1024)
        raise HTTPException(
            status_code=400, detail=f"File size must be less than {max_mb}MB"
        )
    return content


@router.post("/auth/register")
async def register(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    try:
        data = RegisterIn(**await json_body(request))
    except (MalformedInputError, pydantic.ValidationError) as exc:
        raise HTTPException(status_code=400, detail="Invalid request format") from exc
    try:
        user = UserService(db, settings.bcrypt_rounds).register(data)
    except DuplicateUserError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JSONResponse(
        status_code=201,
        content={"message": "User registered successfully", "user": present_user(user)},
    )


@router.post("/auth/login")
async def login(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    try:
        data = LoginIn(**await json_body(request))
    except (MalformedInputError, pydantic.ValidationError) as exc:
        raise HTTPException(status_code=400, detail="Invalid request format") from exc
    try:
        user = UserService(db, settings.bcrypt_rounds).authenticate(data)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except AuthorizationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    token = generate_token(settings, user.id, user.email)
    response = JSONResponse(
        content={
            "message": "Login successful",
            "user": present_user(user),
            "userId": str(user.id),
            "token": token,
        }
    )
    response.set_cookie(
        AUTH_COOKIE,
        token,
        max_age=settings.token_max_age_secs,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="strict",
        path="/",
    )
    logger.info(f"login_ok: user_id={user.id}")
    return response


@router.post("/auth/logout")
def logout():
    response = JSONResponse(content={"message": "Logged out successfully"})
    response.delete_cookie(AUTH_COOKIE, path="/")
    return response


@router.get("/auth/me")
def me(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    try:
        user = UserService(db).get(user_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"userId": str(user.id), **present_user(user)}


@router.get("/transactions")
def list_transactions(
    request: Request,
    user_id: int = Depends(current_user_id),
    settings: Settings = Depends(get_app_settings),
):
    query = query_from_request(request)
    logger.info(
        f"list_transactions: user_id={user_id} page={query.page} limit={query.limit} "
        f"range={query.time_range} type={query.type.value if query.type else 'all'}"
    )
    service = MetricsService(
        request.app.state.session_factory,
        user_id,
        timeout=settings.aggregation_timeout_secs,
        max_workers=settings.aggregation_workers,
    )
    try:
        listing = service.transaction_listing(query, local_now(settings.timezone))
    except StoreError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return present_listing(listing)


@router.post("/transactions")
async def create_transaction(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    try:
        payload = await json_body(request)
    except MalformedInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        txn = TransactionService(db, user_id, settings.timezone).create(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StoreError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return JSONResponse(
        status_code=201,
        content={
            "message": "Transaction created successfully",
            "transaction": present_transaction(txn),
        },
    )


@router.get("/transactions/export.csv")
def export_transactions_endpoint(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    query = query_from_request(request)
    now = local_now(settings.timezone)
    try:
        content = TransactionService(db, user_id).export(query, now)
    except StoreError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    filename = f"transactions_{now.date().isoformat()}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/transactions/import")
async def import_transactions(
    file: UploadFile = File(...),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    filename = file.filename or "upload.csv"
    if not filename.lower().endswith(".csv"):
        raise HTTPException(status_code=400, detail="Only CSV files are supported")
    content = await read_upload(file, settings)
    try:
        result = ImportService(db, user_id).import_csv(filename, content)
    except MalformedInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StoreError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return present_import(result)


@router.get("/analytics")
def analytics(
    request: Request,
    user_id: int = Depends(current_user_id),
    settings: Settings = Depends(get_app_settings),
):
    time_range = request.query_params.get("timeRange") or DEFAULT_RANGE
    service = MetricsService(
        request.app.state.session_factory,
        user_id,
        timeout=settings.aggregation_timeout_secs,
        max_workers=settings.aggregation_workers,
    )
    try:
        overview = service.analytics(time_range, local_now(settings.timezone))
    except StoreError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return present_analytics(overview)


@router.get("/receipts")
def list_receipts(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    receipts = ReceiptService(db, user_id).list()
    return {"receipts": [present_receipt(r) for r in receipts]}


@router.post("/receipts/process")
async def process_receipt(
    request: Request,
    receipt: UploadFile = File(...),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    content = await read_upload(receipt, settings)
    service = ReceiptService(db, user_id, request.app.state.extraction_provider)
    try:
        saved, txn = service.process(
            receipt.filename or "receipt", content, local_now(settings.timezone)
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StoreError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {
        "message": "Receipt processed successfully",
        "receipt": present_receipt(saved),
        "transactionId": txn.id,
    }


@router.delete("/admin/cleanup")
def cleanup_test_data(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    deleted = CleanupService(db, user_id).purge_test_data()
    return {"message": "Test data cleanup completed successfully", "deleted": deleted}


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    extraction_provider: Optional[ExtractionProvider] = None,
) -> FastAPI:
    settings = settings or get_settings()
    if session_factory is None:
        session_factory = create_session_factory(create_db_engine(settings))

    application = FastAPI(title="Finance Tracker", version=APP_VERSION)
    application.state.settings = settings
    application.state.session_factory = session_factory
    application.state.extraction_provider = (
        extraction_provider or TextPatternExtractor()
    )
    application.include_router(router)
    return application


app = create_app()
