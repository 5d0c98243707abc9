"""
Login orchestrator.

Drives a sign-in end to end:

    CollectingEmail -> CollectingPassword -> CheckingDeviceTrust
        -> Authenticated                       (trusted device)
        -> AwaitingCode -> Authenticated       (emailed login-2fa code)
    CollectingPassword -> AwaitingPush -> Authenticated | Failed
    Failed -> CollectingEmail                  (restart)

The state is an explicit LoginFlow value. Between HTTP requests it travels
as a signed login-flow token, so a client cannot jump to a later step. Any
failing operation raises an AuthError and leaves the caller's flow exactly
where it was; only push denial/expiry moves the flow to Failed.
"""

import enum
import logging
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional
from jose import JWTError
from sqlalchemy.orm import Session

from app.core import device_trust, verification
from app.core.errors import Expired, FlowStateError, InvalidCredential
from app.core.push_login import PushApprovalChannel, PushOutcome, push_channel
from app.core.security import LOGIN_FLOW_TOKEN_TYPE, create_login_flow_token, decode_token
from app.core.verification import VerificationResult
from app.crud import account as account_crud
from app.models.verification_code import VerificationPurpose
from app.services.credential_store import CredentialStore, SessionTokens, credential_store

logger = logging.getLogger(__name__)


class LoginStep(str, enum.Enum):
    COLLECTING_EMAIL = "collecting_email"
    COLLECTING_PASSWORD = "collecting_password"
    CHECKING_DEVICE_TRUST = "checking_device_trust"
    AWAITING_CODE = "awaiting_code"
    AWAITING_PUSH = "awaiting_push"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


@dataclass
class LoginFlow:
    """Where a sign-in currently stands."""

    step: LoginStep = LoginStep.COLLECTING_EMAIL
    device_id: Optional[str] = None
    email: Optional[str] = None
    user_id: Optional[str] = None
    push_request_id: Optional[str] = None
    failure_reason: Optional[str] = None

    def to_token(self) -> str:
        claims = asdict(self)
        claims["step"] = self.step.value
        return create_login_flow_token(claims)

    @classmethod
    def from_token(cls, token: str) -> "LoginFlow":
        try:
            payload = decode_token(token, expected_type=LOGIN_FLOW_TOKEN_TYPE)
            state = dict(payload["flow"])
            state["step"] = LoginStep(state["step"])
            return cls(**state)
        except (JWTError, KeyError, TypeError, ValueError):
            raise FlowStateError("Your sign-in attempt has expired. Please start again.")

    def advance(self, step: LoginStep, **changes: Any) -> "LoginFlow":
        state = asdict(self)
        state.update(changes)
        state["step"] = step
        return LoginFlow(**state)


@dataclass
class LoginStepResult:
    flow: LoginFlow
    account_exists: Optional[bool] = None
    hints: Dict[str, Any] = field(default_factory=dict)
    session: Optional[SessionTokens] = None
    push_outcome: Optional[PushOutcome] = None


class LoginOrchestrator:
    """
    Composes the credential store, device trust registry, verification
    channel and push approval channel into one login state machine.

    One instance serves one request; it holds no state of its own.
    """

    def __init__(
        self,
        db: Session,
        credentials: Optional[CredentialStore] = None,
        push: Optional[PushApprovalChannel] = None,
        dispatcher=None
    ):
        self.db = db
        self.credentials = credentials or credential_store
        self.push = push or push_channel
        self.dispatcher = dispatcher

    @staticmethod
    def start(device_id: Optional[str] = None) -> LoginFlow:
        return LoginFlow(step=LoginStep.COLLECTING_EMAIL, device_id=device_id)

    @staticmethod
    def _fresh(flow: LoginFlow) -> LoginFlow:
        return LoginFlow(step=LoginStep.COLLECTING_EMAIL, device_id=flow.device_id)

    def restart(self, flow: LoginFlow) -> LoginFlow:
        """
        Back to CollectingEmail from any step.

        A push request the flow is still waiting on is cancelled, so its
        approval can no longer be redeemed through the abandoned flow token.
        """
        if flow.step is LoginStep.AWAITING_PUSH and flow.push_request_id:
            request_id = uuid.UUID(flow.push_request_id)
            try:
                self.push.cancel(self.db, request_id)
            except FlowStateError:
                logger.warning(f"Push login {request_id} not found while restarting")
            else:
                logger.info(f"Push login {request_id} cancelled by restart")
        return self._fresh(flow)

    def _require(self, flow: LoginFlow, *steps: LoginStep) -> None:
        if flow.step not in steps:
            raise FlowStateError()

    def _account(self, flow: LoginFlow):
        user = account_crud.get_by_id(self.db, uuid.UUID(flow.user_id)) if flow.user_id else None
        if user is None:
            raise FlowStateError()
        return user

    def _authenticate(self, flow: LoginFlow, user) -> LoginStepResult:
        tokens = self.credentials.start_session(self.db, user, device_id=flow.device_id)
        logger.info(f"Login completed for {user.email}")
        return LoginStepResult(
            flow=flow.advance(LoginStep.AUTHENTICATED, user_id=str(user.id), push_request_id=None),
            session=tokens
        )

    # ------------------------------------------------------------------
    # Email and password
    # ------------------------------------------------------------------

    def submit_email(self, flow: LoginFlow, email: str) -> LoginStepResult:
        """
        Look up the account for an email.

        Unknown emails leave the flow in CollectingEmail with
        account_exists=False; the caller routes the user to registration.
        """
        self._require(flow, LoginStep.COLLECTING_EMAIL, LoginStep.FAILED)
        flow = self._fresh(flow)

        user = self.credentials.lookup_account(self.db, email)
        if user is None:
            return LoginStepResult(flow=flow, account_exists=False)

        return LoginStepResult(
            flow=flow.advance(LoginStep.COLLECTING_PASSWORD, email=user.email),
            account_exists=True,
            hints=account_crud.login_hints(user)
        )

    def submit_password(self, flow: LoginFlow, password: str) -> LoginStepResult:
        """
        Check the password with the credential store.

        Raises:
            InvalidCredential: Generic "invalid email or password"; the flow
                stays in CollectingPassword
        """
        self._require(flow, LoginStep.COLLECTING_PASSWORD)
        user = self.credentials.verify_password(self.db, flow.email, password)
        return LoginStepResult(flow=flow.advance(LoginStep.CHECKING_DEVICE_TRUST, user_id=str(user.id)))

    # ------------------------------------------------------------------
    # Device trust and emailed code
    # ------------------------------------------------------------------

    def is_device_trusted(self, flow: LoginFlow) -> bool:
        self._require(flow, LoginStep.CHECKING_DEVICE_TRUST)
        return device_trust.is_trusted(self.db, uuid.UUID(flow.user_id), flow.device_id)

    def check_device_trust(self, flow: LoginFlow) -> LoginStepResult:
        """
        Finish the login on a trusted device, otherwise email a login code.

        Raises:
            Unavailable: If the code could not be delivered (flow unchanged)
        """
        self._require(flow, LoginStep.CHECKING_DEVICE_TRUST)
        if self.is_device_trusted(flow):
            return self._authenticate(flow, self._account(flow))
        return self.issue_login_code(flow)

    def issue_login_code(self, flow: LoginFlow) -> LoginStepResult:
        """
        Email a login-2fa code.

        The resend cooldown applies on every path, so resubmitting the
        password cannot re-issue codes faster than an explicit resend.

        Raises:
            RateLimited: A code was sent less than the cooldown ago
            Unavailable: If the code could not be delivered (flow unchanged)
        """
        self._require(flow, LoginStep.CHECKING_DEVICE_TRUST, LoginStep.AWAITING_CODE)
        user = self._account(flow)
        verification.resend(
            self.db,
            user.email,
            VerificationPurpose.LOGIN_2FA,
            dispatcher=self.dispatcher,
            user_name=user.display_name
        )
        return LoginStepResult(flow=flow.advance(LoginStep.AWAITING_CODE))

    def verify_login_code(self, flow: LoginFlow, code: str) -> LoginStepResult:
        """
        Check the emailed code; on success trust the device and sign in.

        Raises:
            InvalidCredential: Wrong code (flow stays in AwaitingCode)
            Expired: Code aged out or burned; the caller should offer a resend
        """
        self._require(flow, LoginStep.AWAITING_CODE)
        user = self._account(flow)

        result = verification.verify(self.db, user.email, VerificationPurpose.LOGIN_2FA, code)
        if result is VerificationResult.EXPIRED:
            raise Expired()
        if result is not VerificationResult.SUCCESS:
            raise InvalidCredential("Invalid verification code")

        if flow.device_id:
            device_trust.register_device(self.db, user.id, flow.device_id)
        return self._authenticate(flow, user)

    # ------------------------------------------------------------------
    # Push approval
    # ------------------------------------------------------------------

    def request_push(self, flow: LoginFlow) -> LoginStepResult:
        """Ask the account's signed-in devices to approve this login."""
        self._require(flow, LoginStep.COLLECTING_PASSWORD)
        record = self.push.request(self.db, flow.email, device_id=flow.device_id)
        return LoginStepResult(flow=flow.advance(LoginStep.AWAITING_PUSH, push_request_id=str(record.id)))

    async def await_push(self, flow: LoginFlow) -> LoginStepResult:
        """
        Wait for the push request to resolve.

        Approved -> Authenticated. Denied/Expired -> Failed with a reason.
        Cancelled/Superseded -> back to CollectingEmail.
        """
        self._require(flow, LoginStep.AWAITING_PUSH)
        request_id = uuid.UUID(flow.push_request_id)
        outcome = await self.push.wait(self.db, request_id)

        if outcome is PushOutcome.APPROVED:
            self.push.complete(self.db, request_id)
            user = self.credentials.lookup_account(self.db, flow.email)
            if user is None:
                raise FlowStateError()
            result = self._authenticate(flow, user)
            result.push_outcome = outcome
            return result

        if outcome is PushOutcome.DENIED:
            reason = "The sign-in request was denied on your other device."
        elif outcome is PushOutcome.EXPIRED:
            reason = "The sign-in request timed out."
        else:
            logger.info(f"Push login {request_id} ended as {outcome.value}; returning to email step")
            return LoginStepResult(flow=self._fresh(flow), push_outcome=outcome)

        logger.info(f"Push login {request_id} failed: {outcome.value}")
        return LoginStepResult(
            flow=flow.advance(LoginStep.FAILED, push_request_id=None, failure_reason=reason),
            push_outcome=outcome
        )

    def cancel_push(self, flow: LoginFlow) -> LoginStepResult:
        self._require(flow, LoginStep.AWAITING_PUSH)
        self.push.cancel(self.db, uuid.UUID(flow.push_request_id))
        return LoginStepResult(flow=self._fresh(flow), push_outcome=PushOutcome.CANCELLED)
