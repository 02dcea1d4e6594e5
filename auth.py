"""
Identity: password hashing, JWT bearer tokens and role guards.
"""
import logging
from datetime import timedelta
from typing import Optional

from fastapi import Depends, Header
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pymongo.database import Database

import config
from database import create_document, get_db, to_object_id, utcnow
from errors import AuthenticationError, InvalidInputError, PermissionDeniedError
from schemas import User, UserRole

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class SignupRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, use_enum_values=True)

    email: EmailStr
    password: str = Field(..., min_length=6)
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    phone: str = Field(..., pattern=config.PHONE_PATTERN)
    role: UserRole = UserRole.BUYER
    shop_name: Optional[str] = None
    shop_description: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def create_token(user: User) -> str:
    payload = {
        "sub": user.id,
        "email": user.email,
        "role": user.role,
        "exp": utcnow() + timedelta(days=config.JWT_EXPIRE_DAYS),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALG)


def register_user(db: Database, req: SignupRequest) -> User:
    if req.role == UserRole.ADMIN:
        raise PermissionDeniedError("Admin accounts cannot be self-registered")
    if db[config.USERS].find_one({"email": req.email}):
        raise InvalidInputError("Email already registered", field="email")
    user = User(
        email=req.email,
        password_hash=hash_password(req.password),
        first_name=req.first_name,
        last_name=req.last_name,
        phone=req.phone,
        role=req.role,
    )
    if user.role == UserRole.SELLER:
        user.shop_name = req.shop_name or user.full_name
        user.shop_description = req.shop_description
    user_id = create_document(db, config.USERS, user)
    logger.info("Registered %s account %s", user.role, user_id)
    return load_user(db, user_id)


def authenticate(db: Database, email: str, password: str) -> User:
    doc = db[config.USERS].find_one({"email": email})
    if not doc or not pwd_context.verify(password, doc.get("password_hash", "")):
        raise AuthenticationError("Invalid credentials")
    user = User.from_document(doc)
    if not user.is_active:
        raise PermissionDeniedError("Account is disabled")
    return user


def load_user(db: Database, user_id: str) -> Optional[User]:
    oid = to_object_id(user_id) if user_id else None
    doc = db[config.USERS].find_one({"_id": oid}) if oid else None
    return User.from_document(doc) if doc else None


def _user_from_header(db: Database, authorization: Optional[str]) -> Optional[User]:
    if not authorization:
        return None
    token = authorization.replace("Bearer ", "").strip()
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALG])
    except JWTError:
        raise AuthenticationError("Invalid token")
    user = load_user(db, payload.get("sub"))
    if not user:
        raise AuthenticationError("Invalid token user")
    if not user.is_active:
        raise PermissionDeniedError("Account is disabled")
    return user


def get_current_user(authorization: Optional[str] = Header(None), db: Database = Depends(get_db)) -> User:
    user = _user_from_header(db, authorization)
    if user is None:
        raise AuthenticationError("Missing Authorization header")
    return user


def require_role(*roles: UserRole):
    allowed = {UserRole(r).value for r in roles}

    def dependency(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            raise PermissionDeniedError(f"{' or '.join(sorted(allowed)).capitalize()} only")
        return user

    return dependency
