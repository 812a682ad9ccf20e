from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr
from pymongo.database import Database

from config import Settings, get_settings
from database import create_document, get_db, serialize_doc, to_object_id
from schemas import User

logger = structlog.get_logger(__name__)

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/login", auto_error=False)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class SignupIn(BaseModel):
    name: str
    email: EmailStr
    password: str


class LoginIn(BaseModel):
    email: EmailStr
    password: str


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_token(data: dict, token_type: str, expires_delta: timedelta, settings: Settings) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode.update({"exp": expire, "type": token_type})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def create_access_token(user_id: str, settings: Settings) -> str:
    return create_token({"sub": user_id}, "access", timedelta(minutes=settings.access_token_expire_minutes), settings)


def create_refresh_token(user_id: str, settings: Settings) -> str:
    return create_token({"sub": user_id}, "refresh", timedelta(days=settings.refresh_token_expire_days), settings)


def decode_token(token: str, expected_type: str, settings: Settings) -> Optional[str]:
    """Return the subject of a valid token of the expected type, else None."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
    if payload.get("type") != expected_type:
        return None
    return payload.get("sub")


def set_auth_cookies(response: Response, user_id: str, settings: Settings) -> None:
    response.set_cookie(
        ACCESS_COOKIE,
        create_access_token(user_id, settings),
        max_age=settings.access_token_expire_minutes * 60,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="strict",
    )
    response.set_cookie(
        REFRESH_COOKIE,
        create_refresh_token(user_id, settings),
        max_age=settings.refresh_token_expire_days * 24 * 60 * 60,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="strict",
    )


def public_user(user: dict) -> dict:
    doc = serialize_doc(user)
    doc.pop("password_hash", None)
    return doc


async def get_current_user(
    request: Request,
    bearer: Optional[str] = Depends(oauth2_scheme),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    token = request.cookies.get(ACCESS_COOKIE) or bearer
    if not token:
        raise credentials_exception
    user_id = decode_token(token, "access", settings)
    if user_id is None:
        raise credentials_exception

    oid = to_object_id(user_id)
    user = db["user"].find_one({"_id": oid}) if oid else None
    if not user:
        raise credentials_exception
    return user


# Admin guard
def require_admin(user=Depends(get_current_user)):
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admins only")
    return user


@router.post("/signup", status_code=201)
def signup(payload: SignupIn, response: Response, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    if db["user"].find_one({"email": payload.email}):
        raise HTTPException(status_code=400, detail="User already exists")

    user = User(name=payload.name, email=payload.email, password_hash=get_password_hash(payload.password))
    user_id = create_document(db, "user", user)
    set_auth_cookies(response, user_id, settings)
    logger.info("user_signed_up", user_id=user_id)
    return public_user(db["user"].find_one({"_id": to_object_id(user_id)}))


@router.post("/login")
def login(payload: LoginIn, response: Response, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    user = db["user"].find_one({"email": payload.email})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise HTTPException(status_code=400, detail="Invalid email or password")

    set_auth_cookies(response, str(user["_id"]), settings)
    return public_user(user)


@router.post("/logout")
def logout(response: Response):
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE)
    return {"message": "Logged out successfully"}


@router.post("/refresh-token")
def refresh_token(request: Request, response: Response, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    token = request.cookies.get(REFRESH_COOKIE)
    if not token:
        raise HTTPException(status_code=401, detail="No refresh token provided")
    user_id = decode_token(token, "refresh", settings)
    oid = to_object_id(user_id) if user_id else None
    if oid is None or not db["user"].find_one({"_id": oid}):
        raise HTTPException(status_code=401, detail="Invalid refresh token")

    response.set_cookie(
        ACCESS_COOKIE,
        create_access_token(user_id, settings),
        max_age=settings.access_token_expire_minutes * 60,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="strict",
    )
    return {"message": "Token refreshed successfully"}


@router.get("/profile")
def profile(user=Depends(get_current_user)):
    return public_user(user)
