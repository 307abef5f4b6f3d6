import logging
import math
import os
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import psycopg2
from dotenv import load_dotenv
from fastapi import Cookie, Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from jose import JWTError, jwt
from pydantic import BaseModel

from paygate import app_context
from paygate.app.errors import PaymentError
from paygate.app.routes.admin import payments_router as admin_payments_router
from paygate.app.routes.admin import router as admin_settings_router
from paygate.app.routes.checkout import router as checkout_router
from paygate.app.routes.gateways import router as gateways_router
from paygate.app.routes.pricing import router as pricing_router
from paygate.app.routes.webhooks import router as webhooks_router

load_dotenv()


def _parse_connect_timeout(raw_value: str) -> int:
    try:
        timeout = float(raw_value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))


DB_CFG = dict(
    host=os.getenv("DB_HOST", "127.0.0.1"),
    port=int(os.getenv("DB_PORT", "5432")),
    dbname=os.getenv("DB_NAME", "paygate_db"),
    user=os.getenv("DB_USER", "paygate_user"),
    password=os.getenv("DB_PASSWORD", "paygate_pass"),
    connect_timeout=_parse_connect_timeout(os.getenv("DB_CONNECT_TIMEOUT", "5")),
)

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-change-me")
JWT_ALGORITHM = "HS256"
JWT_EXP_MINUTES = int(os.getenv("JWT_EXP_MINUTES", str(60 * 24 * 7)))  # default: 7 days
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

logger = logging.getLogger("payments")


class UserOut(BaseModel):
    id: str
    email: Optional[str] = None
    role: str = "user"


def get_conn():
    return psycopg2.connect(**DB_CFG)


def create_access_token(
    *,
    subject: str,
    email: Optional[str] = None,
    role: str = "user",
    expires_delta: Optional[timedelta] = None,
) -> str:
    payload: Dict[str, Any] = {"sub": subject, "role": role}
    if email:
        payload["email"] = email
    if expires_delta is None:
        expires_delta = timedelta(minutes=JWT_EXP_MINUTES)
    payload["exp"] = datetime.utcnow() + expires_delta
    return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def resolve_user_from_session_token(session_token: str) -> Optional[UserOut]:
    try:
        payload = jwt.decode(session_token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None
    subject = payload.get("sub")
    if not subject:
        return None
    return UserOut(id=str(subject), email=payload.get("email"), role=payload.get("role") or "user")


def _token_from_request(session_token: Optional[str], authorization: Optional[str]) -> Optional[str]:
    if session_token:
        return session_token
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return None


def get_current_user(
    session_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME),
    authorization: Optional[str] = Header(None),
) -> UserOut:
    token = _token_from_request(session_token, authorization)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    user = resolve_user_from_session_token(token)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user


def get_optional_current_user(
    session_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME),
    authorization: Optional[str] = Header(None),
) -> Optional[UserOut]:
    token = _token_from_request(session_token, authorization)
    if not token:
        return None

    try:
        user = resolve_user_from_session_token(token)
    except Exception:
        logger.exception("Unexpected error while resolving optional session token")
        return None
    return user


app = FastAPI(title="Paygate Checkout API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(checkout_router)
app.include_router(webhooks_router)
app.include_router(gateways_router)
app.include_router(pricing_router)
app.include_router(admin_settings_router)
app.include_router(admin_payments_router)


@app.exception_handler(PaymentError)
async def handle_payment_error(request: Request, exc: PaymentError) -> JSONResponse:
    """Buyer-facing errors carry only the public message; admin routes get the full one."""

    admin_route = request.url.path.startswith("/api/admin/")
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.payload(public=not admin_route))


@app.get("/api/auth/me", response_model=UserOut)
def read_current_user(current_user: UserOut = Depends(get_current_user)):
    return current_user


@app.get("/api/healthz")
def healthz():
    return {"ok": app_context.is_configured()}


app_context.configure(
    get_conn=get_conn,
    get_current_user=get_current_user,
    get_optional_current_user=get_optional_current_user,
)
