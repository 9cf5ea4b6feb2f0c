import hmac
import json
import logging
import os
from pathlib import Path
from typing import Optional

import jwt
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from jwt import PyJWKClient
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

from employee_sync.errors import DirectoryStoreError
from employee_sync.models import DEFAULT_LOCAL_DOMAIN, DirectoryRecord, SyncSettings
from employee_sync.reconciliation import run_sync
from employee_sync.sheets_client import GoogleSheetsClient
from employee_sync.supabase_client import SupabaseClient
from employee_sync.sync_log import SyncLogger

# Load environment variables from .env file
load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler()
    ]
)

logger = logging.getLogger("employee_sync.api")

app = FastAPI()

# Initialize rate limiter
limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    """Return errors as {"error": ...} bodies."""
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    return response


_ROOT_DIR = Path(__file__).resolve().parent
_LOG_DIR = _ROOT_DIR / "logs"
_APP_CONFIG_PATH = _ROOT_DIR / "config" / "app_settings.json"

MIN_PASSWORD_LENGTH = 6


def _load_app_config() -> dict:
    if not _APP_CONFIG_PATH.exists():
        return {}
    try:
        return json.loads(_APP_CONFIG_PATH.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logging.warning(f"Ignoring unreadable config file {_APP_CONFIG_PATH}: {exc}")
        return {}


_APP_CONFIG = _load_app_config()


def _get_config_value(env_key: str, config_key: str, default=None):
    env_val = os.getenv(env_key)
    if env_val:
        return env_val
    return _APP_CONFIG.get(config_key, default)


_SUPABASE_URL = _get_config_value("SUPABASE_URL", "supabase_url")
_SUPABASE_ANON_KEY = _get_config_value("SUPABASE_ANON_KEY", "supabase_anon_key")
_SUPABASE_SERVICE_KEY = _get_config_value("SUPABASE_SERVICE_KEY", "supabase_service_key")
_SUPABASE_JWKS_URL = _get_config_value("SUPABASE_JWKS_URL", "supabase_jwks_url")
_SUPABASE_JWT_SECRET = _get_config_value("SUPABASE_JWT_SECRET", "supabase_jwt_secret")
_GOOGLE_SHEET_ID = _get_config_value("GOOGLE_SHEET_ID", "google_sheet_id")
_GOOGLE_SERVICE_ACCOUNT_EMAIL = _get_config_value("GOOGLE_SERVICE_ACCOUNT_EMAIL", "google_service_account_email")
_GOOGLE_PRIVATE_KEY = _get_config_value("GOOGLE_PRIVATE_KEY", "google_private_key")
_DEFAULT_PASSWORD = _get_config_value("DEFAULT_PASSWORD", "default_password")
_LOCAL_EMAIL_DOMAIN = _get_config_value("LOCAL_EMAIL_DOMAIN", "local_email_domain", DEFAULT_LOCAL_DOMAIN)
_SYNC_API_KEY = _get_config_value("SYNC_API_KEY", "sync_api_key")
_ALLOWED_ORIGINS = _get_config_value("ALLOWED_ORIGINS", "allowed_origins", [])
if isinstance(_ALLOWED_ORIGINS, str):
    _ALLOWED_ORIGINS = [origin.strip() for origin in _ALLOWED_ORIGINS.split(",") if origin.strip()]
if not _ALLOWED_ORIGINS:
    _ALLOWED_ORIGINS = ["http://localhost:3000"]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


_SUPABASE_CLIENT = (
    SupabaseClient(_SUPABASE_URL, _SUPABASE_SERVICE_KEY, _SUPABASE_ANON_KEY)
    if _SUPABASE_URL and _SUPABASE_SERVICE_KEY else None
)
_SHEETS_CLIENT = (
    GoogleSheetsClient(_GOOGLE_SHEET_ID, _GOOGLE_SERVICE_ACCOUNT_EMAIL, _GOOGLE_PRIVATE_KEY)
    if _GOOGLE_SHEET_ID and _GOOGLE_SERVICE_ACCOUNT_EMAIL and _GOOGLE_PRIVATE_KEY else None
)
_SYNC_LOGGER: Optional[SyncLogger] = None


def get_directory() -> SupabaseClient:
    if not _SUPABASE_CLIENT:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Supabase client not initialized (set SUPABASE_URL and SUPABASE_SERVICE_KEY)",
        )
    return _SUPABASE_CLIENT


def get_roster_source() -> GoogleSheetsClient:
    if not _SHEETS_CLIENT:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Google Sheets not configured (set GOOGLE_SHEET_ID, GOOGLE_SERVICE_ACCOUNT_EMAIL, GOOGLE_PRIVATE_KEY)",
        )
    return _SHEETS_CLIENT


def get_sync_settings() -> SyncSettings:
    if not _DEFAULT_PASSWORD:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="DEFAULT_PASSWORD is not configured",
        )
    return SyncSettings(_DEFAULT_PASSWORD, _LOCAL_EMAIL_DOMAIN)


def get_local_domain() -> str:
    return _LOCAL_EMAIL_DOMAIN


def get_sync_logger() -> SyncLogger:
    global _SYNC_LOGGER
    if _SYNC_LOGGER is None:
        _SYNC_LOGGER = SyncLogger(_LOG_DIR)
    return _SYNC_LOGGER


def get_sync_api_key() -> Optional[str]:
    return _SYNC_API_KEY


class _AuthVerifier:
    def __init__(self, jwks_url: Optional[str], jwt_secret: Optional[str]):
        self.jwks_client = PyJWKClient(jwks_url) if jwks_url and jwks_url.strip() else None
        self.jwt_secret = jwt_secret

    def verify(self, token: Optional[str]) -> dict:
        if not token:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")

        # Try JWKS first (for RS256 user tokens)
        if self.jwks_client:
            try:
                signing_key = self.jwks_client.get_signing_key_from_jwt(token).key
                return jwt.decode(
                    token,
                    signing_key,
                    algorithms=["RS256", "ES256"],
                    options={"verify_aud": False},
                )
            except jwt.PyJWTError as jwks_exc:
                logger.debug(f"JWKS verification failed: {jwks_exc}, trying JWT secret fallback")

        # Fall back to JWT secret (for HS256 tokens)
        if self.jwt_secret:
            try:
                return jwt.decode(
                    token,
                    self.jwt_secret,
                    algorithms=["HS256"],
                    options={"verify_aud": False},
                )
            except jwt.PyJWTError as exc:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail=f"Invalid token: {exc}",
                ) from exc

        if self.jwks_client:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="JWT verification is not configured (set SUPABASE_JWKS_URL or SUPABASE_JWT_SECRET)",
        )


_AUTH_VERIFIER = _AuthVerifier(_SUPABASE_JWKS_URL, _SUPABASE_JWT_SECRET)


def get_auth_verifier() -> _AuthVerifier:
    return _AUTH_VERIFIER


def _extract_bearer_token(auth_header: Optional[str]) -> Optional[str]:
    if not auth_header:
        return None
    if not auth_header.lower().startswith("bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip()


async def require_auth(request: Request, verifier: _AuthVerifier = Depends(get_auth_verifier)):
    token = _extract_bearer_token(request.headers.get("Authorization"))
    payload = verifier.verify(token)
    request.state.user = payload
    return payload


async def _load_superadmin(payload: dict, directory: SupabaseClient) -> DirectoryRecord:
    """Resolve the token's auth user to an active superadmin employee, or 403."""
    auth_user_id = payload.get("sub")
    employee = None
    if auth_user_id:
        try:
            employee = await directory.get_employee_by_auth_user(auth_user_id)
        except DirectoryStoreError as exc:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    if not employee or not employee.is_superadmin or not employee.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized - Superadmin access required",
        )
    return employee


async def require_superadmin(
    payload: dict = Depends(require_auth),
    directory: SupabaseClient = Depends(get_directory),
) -> DirectoryRecord:
    return await _load_superadmin(payload, directory)


async def _read_json(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON in request body")
    if not isinstance(body, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Request body must be a JSON object")
    return body


def _public_profile(employee: DirectoryRecord) -> dict:
    return {
        "employee_id": employee.employee_id,
        "name": employee.name,
        "position": employee.position,
        "outlet": employee.outlet,
        "email": employee.email,
    }


def _store_failure(exc: DirectoryStoreError) -> HTTPException:
    logger.error(f"Directory call failed: {exc}")
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Directory error: {exc}")


# Auth


@app.post("/api/auth/login")
@limiter.limit("10/minute")
async def login(
    request: Request,
    directory: SupabaseClient = Depends(get_directory),
    local_domain: str = Depends(get_local_domain),
):
    """
    Log in with employee id and password.

    Request body:
    {
        "employee_id": "E001",
        "password": "..."
    }

    Returns the employee profile and the Supabase session on success.
    Inactive (locked) employees get 403 even with a correct password.
    """
    body = await _read_json(request)
    employee_id = body.get("employee_id")
    password = body.get("password")
    if not employee_id or not password:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Employee ID and password are required")

    try:
        employee = await directory.get_employee(employee_id)
    except DirectoryStoreError as exc:
        raise _store_failure(exc)
    if not employee:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid employee ID or password")

    if not employee.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Your account has been deactivated. Please contact HR.",
        )

    try:
        session = await directory.sign_in(employee.login_email(local_domain), password)
    except DirectoryStoreError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid employee ID or password")

    logger.info(f"Login succeeded for {employee_id}")
    return {
        "success": True,
        "user": _public_profile(employee),
        "session": session,
    }


@app.post("/api/auth/change-password")
@limiter.limit("10/minute")
async def change_password(
    request: Request,
    directory: SupabaseClient = Depends(get_directory),
    local_domain: str = Depends(get_local_domain),
):
    """
    Change an employee's password after verifying the current one.

    Request body:
    {
        "employee_id": "E001",
        "current_password": "...",
        "new_password": "..."   # at least 6 characters
    }
    """
    body = await _read_json(request)
    employee_id = body.get("employee_id")
    current_password = body.get("current_password")
    new_password = body.get("new_password")
    if not employee_id or not current_password or not new_password:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="All fields are required")
    if len(new_password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"New password must be at least {MIN_PASSWORD_LENGTH} characters",
        )

    try:
        employee = await directory.get_employee(employee_id)
    except DirectoryStoreError as exc:
        raise _store_failure(exc)
    if not employee:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found")

    # Verify the current password by signing in with it
    try:
        session = await directory.sign_in(employee.login_email(local_domain), current_password)
    except DirectoryStoreError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Current password is incorrect")

    auth_user_id = (session.get("user") or {}).get("id") or employee.auth_user_id
    try:
        await directory.set_password(auth_user_id, new_password)
    except DirectoryStoreError as exc:
        logger.error(f"Failed to update password for {employee_id}: {exc}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to update password")

    logger.info(f"Password changed for {employee_id}")
    return {"success": True, "message": "Password changed successfully"}


@app.get("/api/auth/me")
async def me(request: Request, directory: SupabaseClient = Depends(get_directory)):
    """Profile of the employee owning the bearer token (validated by Supabase)."""
    token = _extract_bearer_token(request.headers.get("Authorization"))
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No authorization header")

    try:
        user = await directory.get_user(token)
    except DirectoryStoreError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    try:
        employee = await directory.get_employee_by_auth_user(user.get("id", ""))
    except DirectoryStoreError as exc:
        raise _store_failure(exc)
    if not employee:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found")
    return {"user": _public_profile(employee)}


# Admin (superadmin only)


@app.get("/api/admin/employees")
async def list_employees(
    admin: DirectoryRecord = Depends(require_superadmin),
    directory: SupabaseClient = Depends(get_directory),
):
    try:
        employees = await directory.list_employee_records(order="name.asc")
    except DirectoryStoreError as exc:
        raise _store_failure(exc)
    return {"employees": [employee.to_dict() for employee in employees]}


async def _set_employee_active(employee_id: str, active: bool, admin: DirectoryRecord, directory: SupabaseClient):
    try:
        employee = await directory.get_employee(employee_id)
        if not employee:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found")
        await directory.set_active(employee_id, active)
    except DirectoryStoreError as exc:
        raise _store_failure(exc)
    action = "activated" if active else "deactivated"
    logger.info(f"Employee {employee_id} {action} by {admin.employee_id}")
    return {"success": True, "message": f"Employee {employee_id} {action}"}


@app.post("/api/admin/activate/{employee_id}")
async def activate_employee(
    employee_id: str,
    admin: DirectoryRecord = Depends(require_superadmin),
    directory: SupabaseClient = Depends(get_directory),
):
    return await _set_employee_active(employee_id, True, admin, directory)


@app.post("/api/admin/deactivate/{employee_id}")
async def deactivate_employee(
    employee_id: str,
    admin: DirectoryRecord = Depends(require_superadmin),
    directory: SupabaseClient = Depends(get_directory),
):
    return await _set_employee_active(employee_id, False, admin, directory)


@app.post("/api/admin/reset-password/{employee_id}")
async def reset_password(
    employee_id: str,
    admin: DirectoryRecord = Depends(require_superadmin),
    directory: SupabaseClient = Depends(get_directory),
    settings: SyncSettings = Depends(get_sync_settings),
):
    """Reset an employee's password to the configured default password."""
    try:
        employee = await directory.get_employee(employee_id)
        if not employee or not employee.auth_user_id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found")
        await directory.set_password(employee.auth_user_id, settings.default_password)
    except DirectoryStoreError as exc:
        logger.error(f"Reset password failed for {employee_id}: {exc}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to reset password")

    logger.info(f"Password for {employee_id} reset by {admin.employee_id}")
    return {"success": True, "message": f"Password reset to default for {employee_id}"}


# Sync


async def _authorize_sync(request: Request, verifier: _AuthVerifier, directory: SupabaseClient, sync_api_key: Optional[str]) -> str:
    """
    A sync may be triggered by a scheduler holding the sync key, or by a superadmin.

    Returns:
        Trigger label for the run log
    """
    provided_key = request.headers.get("X-Sync-Key")
    if provided_key:
        if sync_api_key and hmac.compare_digest(provided_key.encode("utf-8"), sync_api_key.encode("utf-8")):
            return "scheduled"
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid sync key")

    payload = verifier.verify(_extract_bearer_token(request.headers.get("Authorization")))
    admin = await _load_superadmin(payload, directory)
    return f"manual:{admin.employee_id}"


@app.post("/api/sync")
@limiter.limit("6/minute")
async def trigger_sync(
    request: Request,
    verifier: _AuthVerifier = Depends(get_auth_verifier),
    directory: SupabaseClient = Depends(get_directory),
    roster_source: GoogleSheetsClient = Depends(get_roster_source),
    settings: SyncSettings = Depends(get_sync_settings),
    sync_logger: SyncLogger = Depends(get_sync_logger),
    sync_api_key: Optional[str] = Depends(get_sync_api_key),
):
    """
    Run one roster reconciliation.

    Always answers 200 with the SyncReport; report.success tells whether every
    record was processed without error.

    Returns:
    {
        "success": true,
        "added": 1,
        "updated": 20,
        "locked": 0,
        "errors": [],
        "timestamp": "2025-01-01T08:00:00+00:00"
    }
    """
    trigger = await _authorize_sync(request, verifier, directory, sync_api_key)
    report = await run_sync(roster_source, directory, settings)
    sync_logger.record(report, trigger=trigger)
    return report.to_dict()


@app.get("/api/sync/status")
async def sync_status(
    admin: DirectoryRecord = Depends(require_superadmin),
    directory: SupabaseClient = Depends(get_directory),
):
    """Counts of active and inactive employees, newest first."""
    try:
        employees = await directory.list_employee_records(order="created_at.desc")
    except DirectoryStoreError as exc:
        raise _store_failure(exc)
    active = sum(1 for employee in employees if employee.is_active)
    return {
        "total": len(employees),
        "active": active,
        "inactive": len(employees) - active,
        "employees": [employee.to_dict() for employee in employees],
    }
