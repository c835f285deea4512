from datetime import datetime
from typing import Optional, Generic, TypeVar, Any
from fastapi import HTTPException, status, Header, Depends, Request
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorGridFSBucket
from pydantic import BaseModel
from pydantic_settings import BaseSettings
from jose import JWTError, jwt
from bson import ObjectId
from bson.errors import InvalidId


# --- Configuration ---
class Settings(BaseSettings):
    MONGO_URL: str = "mongodb://mongodb:27017"
    MONGO_DB: str = "storefront_db"
    SECRET_KEY: str = "secret"
    ALGORITHM: str = "HS256"

    # Razorpay
    RAZORPAY_KEY_ID: str = "rzp_test_key"
    RAZORPAY_KEY_SECRET: str = "rzp_test_secret"
    RAZORPAY_WEBHOOK_SECRET: str = "rzp_webhook_secret"
    RAZORPAY_API_URL: str = "https://api.razorpay.com/v1"
    GATEWAY_TIMEOUT_SECONDS: float = 10.0

    # Checkout
    CURRENCY: str = "INR"
    STORE_NAME: str = "TAP - Turn Art into Pages"
    STORE_DESCRIPTION: str = "Custom Storybook Purchase"
    THEME_COLOR: str = "#7C3AED"
    GATEWAY_SESSION_TIMEOUT_SECONDS: int = 300
    CHECKOUT_MAX_ATTEMPTS: int = 3
    CHECKOUT_RETRY_BACKOFF_SECONDS: float = 2.0

    # Artwork storage
    ARTWORK_ROOT: str = "artwork"
    ARTWORK_BUCKET: str = "artwork"
    PUBLIC_BASE_URL: str = "http://localhost:8000"
    IMAGE_FETCH_TIMEOUT_SECONDS: float = 30.0
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024

    class Config:
        env_file = ".env"

settings = Settings()


# --- Database ---
def get_db_client(url: str = settings.MONGO_URL) -> AsyncIOMotorClient:
    return AsyncIOMotorClient(url)


class Clients:
    """Process-wide handle on the Mongo client, database and artwork bucket.

    Created once at startup and stored on ``app.state.clients``; request
    handlers receive it through dependencies instead of importing a module
    level singleton.
    """

    def __init__(self, mongodb_client: AsyncIOMotorClient, db_name: str = settings.MONGO_DB,
                 bucket_name: str = settings.ARTWORK_BUCKET):
        self.mongodb_client = mongodb_client
        self.mongodb = mongodb_client[db_name]
        self.artwork_bucket = AsyncIOMotorGridFSBucket(self.mongodb, bucket_name=bucket_name)

    @classmethod
    def create(cls) -> "Clients":
        return cls(get_db_client())

    def close(self):
        self.mongodb_client.close()


def get_clients(request: Request) -> Clients:
    return request.app.state.clients


def str_to_oid(id: str) -> ObjectId:
    try:
        return ObjectId(id)
    except (InvalidId, TypeError):
        raise NotFoundException("Invalid ID format")


def utcnow() -> datetime:
    return datetime.utcnow()


# --- Authentication ---
def verify_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return payload
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


# --- Response Models ---
T = TypeVar("T")

class SuccessResponse(BaseModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None

class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    details: Optional[Any] = None

class HealthResponse(BaseModel):
    service: str
    status: str
    timestamp: datetime
    version: str
    database: Optional[str] = None
    dependencies: Optional[dict] = None


# --- Exceptions ---
class AppException(HTTPException):
    def __init__(
        self,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        detail: str = "An error occurred",
        headers: Optional[dict] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)

class ValidationException(AppException):
    def __init__(self, detail: Any = "Invalid request"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

class NotFoundException(AppException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)

class UnauthorizedException(AppException):
    def __init__(self, detail: str = "Unauthorized"):
         super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"}
        )

class ForbiddenException(AppException):
    def __init__(self, detail: str = "Forbidden"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)

class ConflictException(AppException):
    def __init__(self, detail: str = "Conflict"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)

class GatewayException(AppException):
    def __init__(self, detail: Any = "Payment gateway unavailable"):
        super().__init__(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)


# --- Decorators/Dependencies ---
async def require_auth(request: Request, authorization: str = Header(...)) -> dict:
    scheme, _, param = authorization.partition(" ")
    if not authorization or scheme.lower() != "bearer":
         raise UnauthorizedException(detail="Invalid authentication credentials")
    payload = verify_token(param)
    request.state.user_id = payload.get("sub")
    return payload

async def require_admin(user: dict = Depends(require_auth)) -> dict:
    if user.get("role") != "admin":
        raise ForbiddenException("Admin access required")
    return user
