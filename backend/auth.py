# auth.py — Authentication boundary for TaskShare
# Features:
# - bcrypt password hashing
# - HS256 JWT access tokens with JTI
# - Case-insensitive email identity
# - Shared token verification for HTTP and websocket handshakes

import uuid
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any

import bcrypt
from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, EmailStr, field_validator
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config import (
    JWT_SECRET_KEY, JWT_ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES,
    MIN_PASSWORD_LENGTH, BCRYPT_ROUNDS,
)
from database import get_db_session
from errors import AuthenticationError, ConflictError
from models import User
from schemas import CamelModel, UserOut, user_to_out

logger = logging.getLogger("taskshare.auth")

# bcrypt only looks at the first 72 bytes of a password
MAX_PASSWORD_BYTES = 72

security = HTTPBearer(auto_error=False)


# ============================================================
# PYDANTIC SCHEMAS
# ============================================================

class UserRegister(BaseModel):
    email: EmailStr
    password: str

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if len(v) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
        if len(v.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long")
        return v


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(CamelModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserOut


class CurrentUser(BaseModel):
    id: str
    email: str


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:
    """Password hashing, token issuance and user lookup"""

    @staticmethod
    def hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            return False

    @staticmethod
    def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
        to_encode = data.copy()
        now = datetime.now(timezone.utc)
        to_encode.update({
            "exp": now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)),
            "iat": now,
            "type": "access",
            "jti": str(uuid.uuid4()),
        })
        return jwt.encode(to_encode, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)

    @staticmethod
    def verify_token(token: str) -> Dict[str, Any]:
        try:
            payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
        except ExpiredSignatureError:
            raise AuthenticationError("Token is expired")
        except JWTError:
            raise AuthenticationError("Token is not valid")

        if payload.get("type") != "access" or not payload.get("sub"):
            raise AuthenticationError("Token is not valid")
        return payload

    @staticmethod
    async def get_user_by_email(email: str, db: AsyncSession) -> Optional[User]:
        stmt = select(User).where(func.lower(User.email) == email.strip().lower())
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_user_by_id(user_id: str, db: AsyncSession) -> Optional[User]:
        result = await db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def register_user(user_data: UserRegister, db: AsyncSession) -> User:
        if await AuthService.get_user_by_email(user_data.email, db):
            raise ConflictError("Email already in use")

        new_user = User(
            email=user_data.email,
            password_hash=AuthService.hash_password(user_data.password),
        )
        db.add(new_user)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise ConflictError("Email already in use")
        await db.refresh(new_user)

        logger.info(f"User registered: {new_user.id[:8]}")
        return new_user

    @staticmethod
    async def authenticate_user(email: str, password: str, db: AsyncSession) -> Optional[User]:
        user = await AuthService.get_user_by_email(email, db)
        if not user or not AuthService.verify_password(password, user.password_hash):
            logger.warning("Failed login attempt")
            return None
        return user

    @staticmethod
    def build_token_response(user: User) -> TokenResponse:
        token = AuthService.create_access_token({"sub": user.id, "email": user.email})
        return TokenResponse(
            access_token=token,
            expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            user=user_to_out(user),
        )

    @staticmethod
    async def resolve_token(token: str, db: AsyncSession) -> CurrentUser:
        """Verify a bearer token and load the user it names"""
        payload = AuthService.verify_token(token)
        user = await AuthService.get_user_by_id(payload["sub"], db)
        if not user:
            raise AuthenticationError("User not found")
        return CurrentUser(id=user.id, email=user.email)


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db_session),
) -> CurrentUser:
    if credentials is None:
        raise AuthenticationError("No token provided, authorization denied")
    if credentials.scheme.lower() != "bearer":
        raise AuthenticationError('Token error, format is "Bearer <token>"')
    return await AuthService.resolve_token(credentials.credentials, db)
