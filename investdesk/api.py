"""FastAPI application exposing authentication and investment endpoints."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, load_settings
from .database import Database
from .errors import ErrorKind, ServiceError, Unauthorized, ValidationError
from .investments import InvestmentManager
from .models import Investment, TokenPayload, User
from .security import BearerAuth
from .tokens import TokenService
from .validation import LoginForm, PasswordChangeForm, ProfileUpdateForm, RegistrationForm, parse_form

logger = logging.getLogger("investdesk.api")


class APIModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserResponse(APIModel):
    id: str
    email: str
    first_name: str
    last_name: str
    phone: Optional[str]
    role: str
    is_verified: bool
    balance: float
    investments: List[str]
    created_at: datetime


class InvestmentResponse(APIModel):
    id: str
    user_id: str
    title: str
    description: str
    category: str
    amount: float
    expected_return: float
    duration: int
    risk_level: str
    status: str
    start_date: datetime
    end_date: datetime
    current_value: float
    created_at: datetime
    updated_at: datetime


class AuthResponse(APIModel):
    success: bool = True
    message: str
    user: UserResponse
    token: str


class CurrentUserResponse(APIModel):
    success: bool = True
    user: UserResponse


class UserUpdatedResponse(APIModel):
    success: bool = True
    message: str
    user: UserResponse


class MessageResponse(APIModel):
    success: bool = True
    message: str


class InvestmentListResponse(APIModel):
    success: bool = True
    investments: List[InvestmentResponse]


class InvestmentDetailResponse(APIModel):
    success: bool = True
    investment: InvestmentResponse


class InvestmentMutationResponse(APIModel):
    success: bool = True
    message: str
    investment: InvestmentResponse


def user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        phone=user.phone,
        role=user.role.value,
        is_verified=user.is_verified,
        balance=user.balance,
        investments=list(user.investment_ids),
        created_at=user.created_at,
    )


def investment_to_response(investment: Investment) -> InvestmentResponse:
    return InvestmentResponse(
        id=investment.id,
        user_id=investment.user_id,
        title=investment.title,
        description=investment.description,
        category=investment.category.value,
        amount=investment.amount,
        expected_return=investment.expected_return,
        duration=investment.duration,
        risk_level=investment.risk_level.value,
        status=investment.status.value,
        start_date=investment.start_date,
        end_date=investment.end_date,
        current_value=investment.current_value,
        created_at=investment.created_at,
        updated_at=investment.updated_at,
    )


def _request_error_details(exc: RequestValidationError) -> List[Dict[str, str]]:
    details: List[Dict[str, str]] = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part != "body"]
        details.append({"field": ".".join(loc) or "body", "message": str(error.get("msg", "Invalid value"))})
    return details


def install_error_handlers(app: FastAPI, *, expose_details: bool = False) -> None:
    """Translate every failure into the ``{success, error, details?}`` envelope."""

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
        if exc.kind is ErrorKind.VALIDATION:
            logger.info("Validation failed on %s %s: %s", request.method, request.url.path, exc.details)
        elif exc.kind is ErrorKind.INTERNAL:
            logger.error(
                "Internal error on %s %s",
                request.method,
                request.url.path,
                exc_info=(type(exc), exc, exc.__traceback__),
            )
        headers = {"WWW-Authenticate": "Bearer"} if exc.kind is ErrorKind.UNAUTHORIZED else None
        return JSONResponse(status_code=exc.http_status, content=exc.to_response(), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info("Malformed request body on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "error": "Validation failed", "details": _request_error_details(exc)},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled exception on %s %s",
            request.method,
            request.url.path,
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        body: Dict[str, Any] = {"success": False, "error": "Internal server error"}
        if expose_details:
            body["details"] = f"{type(exc).__name__}: {exc}"
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body)


def create_app(
    *,
    settings: Settings | None = None,
    database: Database | None = None,
    token_service: TokenService | None = None,
    initialize_database: bool = False,
) -> FastAPI:
    if settings is None:
        settings = load_settings()

    if database is None:
        database = Database(settings.database_path, bcrypt_rounds=settings.bcrypt_rounds)
        database.initialize()
    elif initialize_database:
        database.initialize()

    if token_service is None:
        token_service = TokenService(settings)

    auth = BearerAuth(token_service)
    manager = InvestmentManager(database)

    app = FastAPI(
        title="investdesk",
        description="Personal investment tracking API",
        version="1.0.0",
    )
    app.state.settings = settings
    app.state.database = database
    app.state.tokens = token_service
    install_error_handlers(app, expose_details=settings.is_development)

    def get_db() -> Database:
        return database

    def get_manager() -> InvestmentManager:
        return manager

    async def get_identity(request: Request) -> TokenPayload:
        return await auth(request)

    def get_current_user(identity: TokenPayload = Depends(get_identity), db: Database = Depends(get_db)) -> User:
        user = db.get_user(identity.user_id)
        if user is None:
            raise Unauthorized()
        return user

    router = APIRouter(prefix="/api")

    @router.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @router.post("/auth/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
    def register(payload: Any = Body(default=None), db: Database = Depends(get_db)) -> AuthResponse:
        registration = parse_form(RegistrationForm, payload)
        user = db.create_user(registration)
        token = token_service.issue(TokenPayload.for_user(user))
        logger.info("Registered user %s", user.id)
        return AuthResponse(message="User registered successfully", user=user_to_response(user), token=token)

    @router.post("/auth/login", response_model=AuthResponse)
    def login(payload: Any = Body(default=None), db: Database = Depends(get_db)) -> AuthResponse:
        credentials = parse_form(LoginForm, payload)
        user = db.authenticate_user(credentials.email, credentials.password)
        if user is None:
            logger.warning("Failed login attempt for %s", credentials.email)
            raise Unauthorized("Invalid credentials")
        token = token_service.issue(TokenPayload.for_user(user))
        logger.info("User %s signed in", user.id)
        return AuthResponse(message="Login successful", user=user_to_response(user), token=token)

    @router.get("/auth/me", response_model=CurrentUserResponse)
    def read_current_user(current_user: User = Depends(get_current_user)) -> CurrentUserResponse:
        return CurrentUserResponse(user=user_to_response(current_user))

    @router.patch("/auth/me", response_model=UserUpdatedResponse)
    def update_current_user(
        payload: Any = Body(default=None),
        current_user: User = Depends(get_current_user),
        db: Database = Depends(get_db),
    ) -> UserUpdatedResponse:
        form = parse_form(ProfileUpdateForm, payload)
        refreshed = db.update_user_profile(
            current_user.id,
            first_name=form.first_name,
            last_name=form.last_name,
            phone=form.phone,
        )
        return UserUpdatedResponse(message="Profile updated successfully", user=user_to_response(refreshed))

    @router.post("/auth/change-password", response_model=MessageResponse)
    def change_password(
        payload: Any = Body(default=None),
        current_user: User = Depends(get_current_user),
        db: Database = Depends(get_db),
    ) -> MessageResponse:
        form = parse_form(PasswordChangeForm, payload)
        if not db.verify_password(current_user, form.current_password):
            raise ValidationError.for_field("currentPassword", "Current password is incorrect")
        db.set_user_password(current_user.id, form.new_password)
        logger.info("User %s changed their password", current_user.id)
        return MessageResponse(message="Password changed successfully")

    @router.post("/auth/logout", response_model=MessageResponse)
    async def logout(request: Request) -> MessageResponse:
        # Tokens are stateless; the client discards its copy.
        identity = await auth.resolve_identity(request)
        if identity is not None:
            logger.info("User %s signed out", identity.user_id)
        return MessageResponse(message="Logged out successfully")

    @router.get("/investments", response_model=InvestmentListResponse)
    def list_investments(
        identity: TokenPayload = Depends(get_identity),
        investments: InvestmentManager = Depends(get_manager),
    ) -> InvestmentListResponse:
        records = investments.list(identity)
        return InvestmentListResponse(investments=[investment_to_response(item) for item in records])

    @router.post(
        "/investments",
        response_model=InvestmentMutationResponse,
        status_code=status.HTTP_201_CREATED,
    )
    def create_investment(
        payload: Any = Body(default=None),
        identity: TokenPayload = Depends(get_identity),
        investments: InvestmentManager = Depends(get_manager),
    ) -> InvestmentMutationResponse:
        investment = investments.create(identity, payload)
        return InvestmentMutationResponse(
            message="Investment created successfully",
            investment=investment_to_response(investment),
        )

    @router.get("/investments/{investment_id}", response_model=InvestmentDetailResponse)
    def read_investment(
        investment_id: str,
        identity: TokenPayload = Depends(get_identity),
        investments: InvestmentManager = Depends(get_manager),
    ) -> InvestmentDetailResponse:
        investment = investments.get(identity, investment_id)
        return InvestmentDetailResponse(investment=investment_to_response(investment))

    @router.patch("/investments/{investment_id}", response_model=InvestmentMutationResponse)
    def update_investment(
        investment_id: str,
        payload: Any = Body(default=None),
        identity: TokenPayload = Depends(get_identity),
        investments: InvestmentManager = Depends(get_manager),
    ) -> InvestmentMutationResponse:
        investment = investments.update(identity, investment_id, payload)
        return InvestmentMutationResponse(
            message="Investment updated successfully",
            investment=investment_to_response(investment),
        )

    app.include_router(router)
    return app


__all__ = ["create_app", "install_error_handlers", "investment_to_response", "user_to_response"]
