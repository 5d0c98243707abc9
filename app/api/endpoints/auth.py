"""
Authentication endpoints.

Step-by-step login (each step returns a new flow token):
- POST /login/start: Begin a sign-in for a device
- POST /login/email: Look up the account for an email
- POST /login/password: Check the password, then device trust
- POST /login/code: Verify the emailed login code
- POST /login/code/resend: Send a new login code (cooldown applies)
- POST /login/push: Ask a signed-in device to approve instead of a password
- POST /login/push/await: Wait for the approval outcome
- POST /login/push/cancel: Abandon the push request
- POST /login/restart: Back to the email step

Accounts and sessions:
- POST /register/start, /register/complete: Email-verified registration
- POST /password/forgot, /password/reset: Reset a forgotten password by emailed code
- POST /refresh: New tokens for the same session
- POST /logout: End the current session
- POST /password: Change password (ends other sessions)
- GET /me: Current account
"""

import logging
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.core import account_recovery, registration
from app.core.config import settings
from app.core.database import get_db
from app.core.deps import (
    get_client_ip,
    get_credential_store,
    get_current_session,
    get_current_user,
    get_email_dispatcher,
    get_push_channel,
)
from app.core.login_flow import LoginFlow, LoginOrchestrator, LoginStepResult
from app.core.push_login import PushApprovalChannel
from app.core.rate_limiter import (
    check_account_lookup_limit,
    check_push_request_limit,
    check_send_code_limit,
    check_verify_code_limit,
)
from app.models.user import User
from app.models.user_session import UserSession
from app.schemas.auth import (
    FlowTokenRequest,
    LoginCodeRequest,
    LoginEmailRequest,
    LoginFlowResponse,
    LoginPasswordRequest,
    LoginStartRequest,
)
from app.schemas.user import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    RegisterCompleteRequest,
    RegisterStartRequest,
    ResetPasswordRequest,
    TokenRefreshRequest,
    TokenResponse,
    UserResponse,
)
from app.schemas.verification import SendCodeResponse
from app.services.credential_store import CredentialStore, SessionTokens

router = APIRouter(prefix="/auth", tags=["Authentication"])
logger = logging.getLogger(__name__)


def get_login_orchestrator(
    db: Session = Depends(get_db),
    credentials: CredentialStore = Depends(get_credential_store),
    push: PushApprovalChannel = Depends(get_push_channel),
    dispatcher=Depends(get_email_dispatcher)
) -> LoginOrchestrator:
    return LoginOrchestrator(db, credentials=credentials, push=push, dispatcher=dispatcher)


def _token_response(tokens: SessionTokens) -> TokenResponse:
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        token_type=tokens.token_type,
        session_id=tokens.session_id,
        user=UserResponse.model_validate(tokens.user)
    )


def _flow_response(result: LoginStepResult) -> LoginFlowResponse:
    flow = result.flow
    return LoginFlowResponse(
        flow_token=flow.to_token(),
        step=flow.step.value,
        account_exists=result.account_exists,
        hints=result.hints,
        push_request_id=flow.push_request_id,
        push_outcome=result.push_outcome.value if result.push_outcome else None,
        failure_reason=flow.failure_reason,
        tokens=_token_response(result.session) if result.session else None
    )


# ----------------------------------------------------------------------
# Login flow
# ----------------------------------------------------------------------

@router.post("/login/start", response_model=LoginFlowResponse)
def login_start(request: LoginStartRequest):
    """Begin a sign-in. The device id decides whether a login code is needed later."""
    return _flow_response(LoginStepResult(flow=LoginOrchestrator.start(request.device_id)))


@router.post("/login/email", response_model=LoginFlowResponse)
def login_email(
    request: LoginEmailRequest,
    http_request: Request,
    orchestrator: LoginOrchestrator = Depends(get_login_orchestrator)
):
    """
    Check whether an account exists for the email.

    `account_exists=false` keeps the flow at the email step; the client
    offers registration instead.
    """
    check_account_lookup_limit(get_client_ip(http_request))
    flow = LoginFlow.from_token(request.flow_token)
    return _flow_response(orchestrator.submit_email(flow, request.email))


@router.post("/login/password", response_model=LoginFlowResponse)
def login_password(
    request: LoginPasswordRequest,
    orchestrator: LoginOrchestrator = Depends(get_login_orchestrator)
):
    """
    Verify the password and check device trust in one round trip.

    A trusted device comes back `authenticated` with tokens; any other
    device comes back `awaiting_code` after a login code was emailed.
    A wrong password leaves the caller's flow token valid for a retry.
    """
    flow = LoginFlow.from_token(request.flow_token)
    result = orchestrator.submit_password(flow, request.password)
    if not orchestrator.is_device_trusted(result.flow):
        check_send_code_limit(result.flow.email)
    return _flow_response(orchestrator.check_device_trust(result.flow))


@router.post("/login/code", response_model=LoginFlowResponse)
def login_code(
    request: LoginCodeRequest,
    orchestrator: LoginOrchestrator = Depends(get_login_orchestrator)
):
    """
    Verify the emailed code. On success the device becomes trusted.

    Returns 401 for a wrong code and 410 once the code expired or was
    burned by too many wrong guesses (request a new one).
    """
    flow = LoginFlow.from_token(request.flow_token)
    if flow.email:
        check_verify_code_limit(flow.email)
    return _flow_response(orchestrator.verify_login_code(flow, request.code))


@router.post("/login/code/resend", response_model=LoginFlowResponse)
def login_code_resend(
    request: FlowTokenRequest,
    orchestrator: LoginOrchestrator = Depends(get_login_orchestrator)
):
    flow = LoginFlow.from_token(request.flow_token)
    if flow.email:
        check_send_code_limit(flow.email)
    return _flow_response(orchestrator.issue_login_code(flow))


@router.post("/login/push", response_model=LoginFlowResponse)
def login_push(
    request: FlowTokenRequest,
    orchestrator: LoginOrchestrator = Depends(get_login_orchestrator)
):
    """Send a push approval request to the account's signed-in devices."""
    flow = LoginFlow.from_token(request.flow_token)
    if flow.email:
        check_push_request_limit(flow.email)
    return _flow_response(orchestrator.request_push(flow))


@router.post("/login/push/await", response_model=LoginFlowResponse)
async def login_push_await(
    request: FlowTokenRequest,
    orchestrator: LoginOrchestrator = Depends(get_login_orchestrator)
):
    """
    Long-poll until the push request is approved, denied, cancelled,
    superseded or times out (PUSH_LOGIN_TIMEOUT_SECONDS).
    """
    flow = LoginFlow.from_token(request.flow_token)
    return _flow_response(await orchestrator.await_push(flow))


@router.post("/login/push/cancel", response_model=LoginFlowResponse)
def login_push_cancel(
    request: FlowTokenRequest,
    orchestrator: LoginOrchestrator = Depends(get_login_orchestrator)
):
    flow = LoginFlow.from_token(request.flow_token)
    return _flow_response(orchestrator.cancel_push(flow))


@router.post("/login/restart", response_model=LoginFlowResponse)
def login_restart(
    request: FlowTokenRequest,
    orchestrator: LoginOrchestrator = Depends(get_login_orchestrator)
):
    """Back to the email step. A pending push request is cancelled."""
    flow = LoginFlow.from_token(request.flow_token)
    return _flow_response(LoginStepResult(flow=orchestrator.restart(flow)))


# ----------------------------------------------------------------------
# Registration
# ----------------------------------------------------------------------

@router.post("/register/start", response_model=SendCodeResponse)
def register_start(
    request: RegisterStartRequest,
    db: Session = Depends(get_db),
    credentials: CredentialStore = Depends(get_credential_store),
    dispatcher=Depends(get_email_dispatcher)
):
    """
    Email a registration code.

    The response is the same whether or not the email is already
    registered, so it cannot be used to discover accounts.
    """
    check_send_code_limit(request.email)
    registration.start_registration(db, request.email, dispatcher=dispatcher, credentials=credentials)
    return SendCodeResponse(
        success=True,
        message="If this email can be registered, a verification code is on its way.",
        expires_in_minutes=settings.VERIFICATION_CODE_EXPIRATION_MINUTES,
        resend_after_seconds=settings.VERIFICATION_RESEND_COOLDOWN_SECONDS
    )


@router.post("/register/complete", status_code=201, response_model=TokenResponse)
def register_complete(
    request: RegisterCompleteRequest,
    db: Session = Depends(get_db),
    credentials: CredentialStore = Depends(get_credential_store)
):
    """Verify the registration code, create the account and sign it in."""
    check_verify_code_limit(request.email)
    tokens = registration.complete_registration(
        db,
        email=request.email,
        code=request.code,
        password=request.password,
        display_name=request.display_name,
        device_id=request.device_id,
        credentials=credentials
    )
    return _token_response(tokens)


# ----------------------------------------------------------------------
# Password reset
# ----------------------------------------------------------------------

@router.post("/password/forgot", response_model=SendCodeResponse)
def forgot_password(
    request: ForgotPasswordRequest,
    db: Session = Depends(get_db),
    credentials: CredentialStore = Depends(get_credential_store),
    dispatcher=Depends(get_email_dispatcher)
):
    """
    Email a password reset code.

    Always returns success to prevent email enumeration attacks.
    """
    check_send_code_limit(request.email)
    account_recovery.start_password_reset(db, request.email, dispatcher=dispatcher, credentials=credentials)
    return SendCodeResponse(
        success=True,
        message="If an account with that email exists, a reset code has been sent.",
        expires_in_minutes=settings.VERIFICATION_CODE_EXPIRATION_MINUTES,
        resend_after_seconds=settings.VERIFICATION_RESEND_COOLDOWN_SECONDS
    )


@router.post("/password/reset", status_code=status.HTTP_204_NO_CONTENT)
def reset_password(
    request: ResetPasswordRequest,
    db: Session = Depends(get_db),
    credentials: CredentialStore = Depends(get_credential_store)
):
    """Verify the reset code and set a new password. Every session is signed out."""
    check_verify_code_limit(request.email)
    account_recovery.complete_password_reset(
        db,
        email=request.email,
        code=request.code,
        new_password=request.new_password,
        credentials=credentials
    )


# ----------------------------------------------------------------------
# Sessions
# ----------------------------------------------------------------------

@router.post("/refresh", response_model=TokenResponse)
def refresh_token(
    request: TokenRefreshRequest,
    db: Session = Depends(get_db),
    credentials: CredentialStore = Depends(get_credential_store)
):
    """Issue fresh tokens for the session the refresh token belongs to."""
    return _token_response(credentials.refresh(db, request.refresh_token))


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    credentials: CredentialStore = Depends(get_credential_store)
):
    """End the current session. Its tokens and any vault unlock stop working."""
    credentials.end_session(db, session)


@router.post("/password", status_code=status.HTTP_204_NO_CONTENT)
def change_password(
    request: ChangePasswordRequest,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    credentials: CredentialStore = Depends(get_credential_store)
):
    credentials.update_password(db, session, request.current_password, request.new_password)


@router.get("/me", response_model=UserResponse)
def get_current_user_profile(current_user: User = Depends(get_current_user)):
    """
    Get current authenticated user's account.

    Requires valid JWT token in Authorization header.
    """
    return current_user
