import html
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, field_validator
from pydantic_core import PydanticCustomError
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import USER_COLLECTION, get_db
from schemas import User

logger = logging.getLogger(__name__)

# Environment / Auth settings
INSECURE_SECRET_KEY = "dev-secret-key-change-me"
SECRET_KEY = os.getenv("JWT_SECRET", INSECURE_SECRET_KEY)
APP_ENV = os.getenv("APP_ENV", "development")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24

COOKIE_NAME = os.getenv("COOKIE_NAME", "potions_token")
COOKIE_SECURE = os.getenv("COOKIE_SECURE", "false").lower() in ("1", "true", "yes")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
# Bearer header is accepted as a fallback for clients that cannot hold cookies
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)

router = APIRouter(prefix="/auth", tags=["auth"])


def check_secret_key() -> None:
    if os.getenv("JWT_SECRET"):
        return
    if APP_ENV == "production":
        raise RuntimeError("JWT_SECRET must be set when APP_ENV=production")
    logger.warning("JWT_SECRET is not set, signing sessions with the development key")


EXTRA_ESCAPES = str.maketrans({"/": "&#x2F;", "\\": "&#x5C;", "`": "&#96;"})


def normalize(value: str) -> str:
    """Trim and HTML-escape user input before it is validated or stored."""
    return html.escape(value.strip()).translate(EXTRA_ESCAPES)


class RegisterRequest(BaseModel):
    username: str
    password: str

    @field_validator("username")
    @classmethod
    def check_username(cls, value: str) -> str:
        value = normalize(value)
        if not value:
            raise PydanticCustomError("username_required", "Username is required.")
        if not 3 <= len(value) <= 30:
            raise PydanticCustomError("username_length", "Must be between 3 and 30 characters.")
        return value

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        value = normalize(value)
        if not value:
            raise PydanticCustomError("password_required", "Password is required.")
        if len(value) < 6:
            raise PydanticCustomError("password_length", "Minimum 6 characters.")
        return value


class LoginRequest(BaseModel):
    username: str
    password: str

    @field_validator("username", "password")
    @classmethod
    def normalize_input(cls, value: str) -> str:
        return normalize(value)


class Message(BaseModel):
    message: str


class CurrentUser(BaseModel):
    id: str
    username: str


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    issued_at = datetime.now(timezone.utc)
    expire = issued_at + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"iat": issued_at, "exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def decode_access_token(token: str) -> CurrentUser:
    """
    Verify signature and expiry of a session token.

    Raises:
        HTTPException(401): the token is malformed, expired or lacks claims.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise credentials_exception
    user_id = payload.get("sub")
    username = payload.get("username")
    if user_id is None or username is None:
        raise credentials_exception
    return CurrentUser(id=user_id, username=username)


def get_current_user(request: Request, bearer_token: Optional[str] = Depends(oauth2_scheme)) -> CurrentUser:
    token = request.cookies.get(COOKIE_NAME) or bearer_token
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user = decode_access_token(token)
    request.state.user = user
    return user


# Auth endpoints
@router.post("/register", response_model=Message, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, db: Database = Depends(get_db)):
    user = User(
        username=payload.username,
        password_hash=get_password_hash(payload.password),
        created_at=datetime.now(timezone.utc),
    )
    try:
        db[USER_COLLECTION].insert_one(user.model_dump())
    except DuplicateKeyError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username already exists")
    logger.info("Registered user %s", payload.username)
    return {"message": "User created"}


@router.post("/login", response_model=Message)
def login(payload: LoginRequest, response: Response, db: Database = Depends(get_db)):
    user = db[USER_COLLECTION].find_one({"username": payload.username})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        logger.info("Login failed for user=%s", payload.username)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    token = create_access_token({"sub": str(user["_id"]), "username": user["username"]})
    response.set_cookie(
        key=COOKIE_NAME,
        value=token,
        max_age=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        httponly=True,
        samesite="strict",
        secure=COOKIE_SECURE,
    )
    logger.info("Login ok: %s", user["username"])
    return {"message": "Logged in"}


@router.get("/logout", response_model=Message)
def logout(response: Response):
    # Tokens are not revoked server side; the cookie is simply dropped
    response.delete_cookie(COOKIE_NAME, httponly=True, samesite="strict", secure=COOKIE_SECURE)
    return {"message": "Logged out"}
