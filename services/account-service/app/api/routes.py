"""HTTP route definitions for the account service."""

from __future__ import annotations

import logging
from datetime import datetime

import jwt
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import BaseModel
from schemas import Account as AccountView

from ..domain.account import Account
from ..domain.contracts import RegisterAccountInput
from ..domain.outcomes import AuthOutcome, TokenBundle
from ..domain.service import AccountService
from ..domain.token_service import TokenService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")

_OUTCOME_STATUS: dict[AuthOutcome, int] = {
    AuthOutcome.INVALID_FORMAT: status.HTTP_400_BAD_REQUEST,
    AuthOutcome.NAME_TAKEN: status.HTTP_409_CONFLICT,
    AuthOutcome.EMAIL_TAKEN: status.HTTP_409_CONFLICT,
    AuthOutcome.USER_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    AuthOutcome.INVALID_PASSWORD: status.HTTP_401_UNAUTHORIZED,
    AuthOutcome.TOKEN_EXPIRED: status.HTTP_401_UNAUTHORIZED,
    AuthOutcome.ACCOUNT_NOT_VERIFIED: status.HTTP_403_FORBIDDEN,
    AuthOutcome.EXTERNAL_IDENTITY_FAILED: status.HTTP_502_BAD_GATEWAY,
    AuthOutcome.CODE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    AuthOutcome.CODE_EXPIRED: status.HTTP_410_GONE,
}


class RegisterRequest(BaseModel):
    """Payload accepted when registering a new account."""

    name: str
    password: str
    email: str


class ActivateRequest(BaseModel):
    """Activation code received by email."""

    email: str
    code: str


class LoginRequest(BaseModel):
    """Credentials; ``login`` may be either the account name or its email."""

    login: str
    password: str


class RefreshTokenRequest(BaseModel):
    """Request body carrying a previously issued refresh token."""

    refresh_token: str


class PasswordResetRequest(BaseModel):
    email: str
    new_password: str


class OwnPasswordResetRequest(BaseModel):
    new_password: str


class PasswordConfirmRequest(BaseModel):
    email: str
    code: str


class OutcomeResponse(BaseModel):
    """Result of a workflow that returns no payload beyond its outcome."""

    outcome: AuthOutcome


class TokenResponse(BaseModel):
    """Token issuance response containing the bearer token and metadata."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_token: str
    refresh_expires_at: datetime

    @classmethod
    def from_bundle(cls, bundle: TokenBundle) -> "TokenResponse":
        return cls(
            access_token=bundle.access_token,
            expires_in=bundle.access_expires_in,
            refresh_token=bundle.refresh_token.token,
            refresh_expires_at=bundle.refresh_token.expires_at,
        )


class UsersResponse(BaseModel):
    users: list[AccountView]


def get_service(request: Request) -> AccountService:
    """Resolve the `AccountService` stored on the FastAPI application state."""
    service: AccountService = request.app.state.account_service
    return service


def get_token_service(request: Request) -> TokenService:
    """Resolve the `TokenService` stored on the FastAPI application state."""
    service: TokenService = request.app.state.token_service
    return service


def get_current_account_id(
    authorization: str = Header(..., alias="Authorization"),
    tokens: TokenService = Depends(get_token_service),
) -> str:
    """Resolve the account id carried by the request's bearer access token."""
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="bearer token required")
    try:
        return tokens.authenticate(credentials)
    except jwt.PyJWTError as exc:
        logger.info("rejected access token: %s", exc)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid access token") from exc


def _ensure_success(outcome: AuthOutcome) -> None:
    if outcome is not AuthOutcome.SUCCESS:
        raise HTTPException(status_code=_OUTCOME_STATUS[outcome], detail=outcome.value)


def _to_view(account: Account) -> AccountView:
    return AccountView(
        account_id=account.account_id,
        name=account.name,
        email=account.email,
        verified=account.verified,
    )


@router.post("/auth/register", response_model=OutcomeResponse, status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterRequest,
    service: AccountService = Depends(get_service),
) -> OutcomeResponse:
    """Register an account; a pending unverified registration for the same name or email is replaced."""
    outcome = service.register(
        RegisterAccountInput(name=payload.name, password=payload.password, email=payload.email)
    )
    _ensure_success(outcome)
    return OutcomeResponse(outcome=outcome)


@router.post("/auth/activate", response_model=OutcomeResponse)
def activate(
    payload: ActivateRequest,
    service: AccountService = Depends(get_service),
) -> OutcomeResponse:
    outcome = service.activate_account(payload.email, payload.code)
    _ensure_success(outcome)
    return OutcomeResponse(outcome=outcome)


@router.post("/auth/login", response_model=TokenResponse)
def login(
    payload: LoginRequest,
    service: AccountService = Depends(get_service),
    tokens: TokenService = Depends(get_token_service),
) -> TokenResponse:
    """Verify credentials and issue a fresh access/refresh token pair."""
    _ensure_success(service.verify_credentials(payload.login, payload.password))
    bundle = tokens.issue_for_login(payload.login)
    return TokenResponse.from_bundle(bundle)


@router.post("/auth/token/check", response_model=OutcomeResponse)
def check_token(
    payload: RefreshTokenRequest,
    tokens: TokenService = Depends(get_token_service),
) -> OutcomeResponse:
    outcome = tokens.check_validity(payload.refresh_token)
    _ensure_success(outcome)
    return OutcomeResponse(outcome=outcome)


@router.post("/auth/token/refresh", response_model=TokenResponse)
def refresh_token(
    payload: RefreshTokenRequest,
    tokens: TokenService = Depends(get_token_service),
) -> TokenResponse:
    """Exchange a live refresh token for a new pair; the presented token stops working."""
    _ensure_success(tokens.check_validity(payload.refresh_token))
    result = tokens.rotate(payload.refresh_token)
    _ensure_success(result.outcome)
    return TokenResponse.from_bundle(result.tokens)


@router.post("/auth/token/revoke-all", response_model=TokenResponse)
def revoke_all_tokens(
    payload: RefreshTokenRequest,
    tokens: TokenService = Depends(get_token_service),
) -> TokenResponse:
    """Sign out every other session and return the only remaining token pair."""
    _ensure_success(tokens.check_validity(payload.refresh_token))
    result = tokens.revoke_all(payload.refresh_token)
    _ensure_success(result.outcome)
    return TokenResponse.from_bundle(result.tokens)


@router.post("/auth/logout", response_model=OutcomeResponse)
def logout(
    payload: RefreshTokenRequest,
    tokens: TokenService = Depends(get_token_service),
) -> OutcomeResponse:
    outcome = tokens.revoke(payload.refresh_token)
    _ensure_success(outcome)
    return OutcomeResponse(outcome=outcome)


@router.post("/auth/password/reset", response_model=OutcomeResponse)
def request_password_reset(
    payload: PasswordResetRequest,
    service: AccountService = Depends(get_service),
) -> OutcomeResponse:
    """Stage a new password; it takes effect once the emailed code is confirmed."""
    outcome = service.request_password_reset(payload.email, payload.new_password)
    _ensure_success(outcome)
    return OutcomeResponse(outcome=outcome)


@router.post("/auth/password/reset/me", response_model=OutcomeResponse)
def request_own_password_reset(
    payload: OwnPasswordResetRequest,
    account_id: str = Depends(get_current_account_id),
    service: AccountService = Depends(get_service),
) -> OutcomeResponse:
    """Stage a new password for the account identified by the bearer access token."""
    outcome = service.request_password_reset_for(account_id, payload.new_password)
    _ensure_success(outcome)
    return OutcomeResponse(outcome=outcome)


@router.post("/auth/password/confirm", response_model=OutcomeResponse)
def confirm_password_reset(
    payload: PasswordConfirmRequest,
    service: AccountService = Depends(get_service),
) -> OutcomeResponse:
    outcome = service.confirm_password_reset(payload.email, payload.code)
    _ensure_success(outcome)
    return OutcomeResponse(outcome=outcome)


@router.get("/users", response_model=UsersResponse)
def list_users(
    _: str = Depends(get_current_account_id),
    service: AccountService = Depends(get_service),
) -> UsersResponse:
    return UsersResponse(users=[_to_view(account) for account in service.list_accounts()])


@router.get("/users/{account_id}", response_model=AccountView)
def get_user(
    account_id: str,
    _: str = Depends(get_current_account_id),
    service: AccountService = Depends(get_service),
) -> AccountView:
    """Retrieve the public view of a single account."""
    account = service.get_account(account_id)
    if account is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="account not found")
    return _to_view(account)
