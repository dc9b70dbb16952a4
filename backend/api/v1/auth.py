from fastapi import APIRouter, Depends
from api.dependencies import (
    get_account_service,
    get_bearer_token,
    get_current_identity,
    get_reset_service,
    get_state_store,
)
from core.config import settings
from core.errors import ErrorKind, ServiceResult
from schemas.auth_schema import (
    Envelope,
    ForgotPasswordRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    VerifyOtpRequest,
)
from services.otp import normalize_email
from services.password_reset import PasswordResetService
from services.rate_limit import check_limit
from services.state_store import EphemeralStateStore
from services.user_service import AccountService
from utils.responses import envelope_json

router = APIRouter()

@router.post("/register", response_model=Envelope, status_code=201)
async def register(payload: RegisterRequest, accounts: AccountService = Depends(get_account_service)):
    return envelope_json(await accounts.register(payload.name, payload.email, payload.password))

@router.post("/login", response_model=Envelope)
async def login(payload: LoginRequest, accounts: AccountService = Depends(get_account_service)):
    return envelope_json(await accounts.login(payload.email, payload.password))

@router.get("/me", response_model=Envelope)
async def me(identity: dict = Depends(get_current_identity), accounts: AccountService = Depends(get_account_service)):
    return envelope_json(await accounts.me(identity))

@router.post("/logout", response_model=Envelope)
async def logout(
    identity: dict = Depends(get_current_identity),
    token: str = Depends(get_bearer_token),
    accounts: AccountService = Depends(get_account_service),
):
    return envelope_json(await accounts.logout(token))

@router.post("/forgot-password", response_model=Envelope)
async def forgot_password(
    payload: ForgotPasswordRequest,
    resets: PasswordResetService = Depends(get_reset_service),
    store: EphemeralStateStore = Depends(get_state_store),
):
    email = normalize_email(payload.email)
    limit = await check_limit(
        store,
        "reset_request",
        email,
        limit=settings.RESET_REQUEST_LIMIT,
        window_seconds=settings.RESET_REQUEST_WINDOW_SECONDS,
    )
    if not limit.allowed:
        return envelope_json(ServiceResult.fail(ErrorKind.RATE_LIMITED, "Too many OTP requests. Please try again later."))
    return envelope_json(await resets.request_reset(email))

@router.post("/verify-otp", response_model=Envelope)
async def verify_otp(payload: VerifyOtpRequest, resets: PasswordResetService = Depends(get_reset_service)):
    return envelope_json(await resets.verify_otp(payload.email, payload.otp))

@router.post("/reset-password", response_model=Envelope)
async def reset_password(payload: ResetPasswordRequest, resets: PasswordResetService = Depends(get_reset_service)):
    return envelope_json(await resets.commit_password(payload.email, payload.password))

@router.get("/health")
async def health_check():
    return {"status": "ok"}
