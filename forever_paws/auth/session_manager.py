"""
Session lifecycle: sign-in, sign-up, auto-login, sign-out.

Owns the single active Session of the process. The persisted token is always
written before the in-memory session is published (write-then-flip), and every
state change runs on the owner thread. Events are published on the caller's
thread once the owner has applied the change.
"""

from __future__ import annotations

import json
import threading
import time
from typing import Callable, List, Optional, Tuple

from ..api.backend import DirectAuthClient, TableClient
from ..api.gateway import GatewayClient
from ..api.schemas import RemoteUser
from ..core.events import EventBus, UserSignedIn, UserSignedOut, UserSwitched
from ..core.owner import OwnerExecutor
from ..models.session import (
    AuthSource,
    RememberedCredentials,
    Session,
    SessionState,
    SignUpResult,
)
from ..utils.exceptions import (
    ApiError,
    AuthenticationFailed,
    CredentialStoreError,
    EmailAlreadyRegistered,
    InvalidInput,
    NetworkError,
    NotAuthenticated,
    PersistenceError,
    SessionSuperseded,
)
from ..utils.logger import get_logger
from .credential_store import (
    ACCESS_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    REMEMBERED_EMAIL_KEY,
    REMEMBERED_PASSWORD_KEY,
    SESSION_USER_KEY,
    CredentialStore,
)
from .email_policy import EmailPolicy, PasswordPolicy

logger = get_logger(__name__)

# Statuses that mean "this endpoint is unavailable, try the next one"
FALLBACK_STATUSES = frozenset({404, 500, 502, 503})
# Statuses that mean "the credentials are wrong"; never retried elsewhere
AUTH_FAILURE_STATUSES = frozenset({400, 401, 403, 422})

SESSION_KEYS = (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, SESSION_USER_KEY)
REMEMBERED_KEYS = (REMEMBERED_EMAIL_KEY, REMEMBERED_PASSWORD_KEY)

CONFIRMATION_MESSAGE = "Check your email to confirm your account, then sign in."


def _is_conflict(error: ApiError) -> bool:
    text = str(error).lower()
    return error.status_code == 409 or "already registered" in text or "already exists" in text


class SessionManager:
    """Signs users in and out and keeps the persisted session consistent."""

    def __init__(
        self,
        credential_store: CredentialStore,
        gateway: GatewayClient,
        direct_auth: DirectAuthClient,
        local_store,
        owner: OwnerExecutor,
        events: EventBus,
        alternate_gateway: Optional[GatewayClient] = None,
        table_client: Optional[TableClient] = None,
        email_policy: Optional[EmailPolicy] = None,
        password_policy: Optional[PasswordPolicy] = None,
        auto_login_throttle_seconds: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.credentials = credential_store
        self.gateway = gateway
        self.alternate_gateway = alternate_gateway
        self.direct_auth = direct_auth
        self.table_client = table_client
        self.local_store = local_store
        self.owner = owner
        self.events = events
        self.email_policy = email_policy or EmailPolicy()
        self.password_policy = password_policy or PasswordPolicy()
        self.auto_login_throttle_seconds = auto_login_throttle_seconds
        self._clock = clock

        self._state = SessionState.LOGGED_OUT
        self._session: Optional[Session] = None
        self._generation = 0
        self._last_user_id: Optional[str] = None

        self._throttle_lock = threading.Lock()
        self._auto_login_running = False
        self._last_auto_login: Optional[float] = None

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def current_session(self) -> Optional[Session]:
        return self._session

    @property
    def current_token(self) -> Optional[str]:
        session = self._session
        return session.access_token if session else None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_logged_in(self) -> bool:
        return self._state == SessionState.LOGGED_IN and self._session is not None

    def require_session(self, user_id: Optional[str] = None) -> Session:
        """Return the active session, optionally checking it belongs to user_id."""
        session = self._session
        if self._state != SessionState.LOGGED_IN or session is None:
            raise NotAuthenticated("No signed-in user")
        if user_id is not None and session.user_id != user_id:
            raise NotAuthenticated(f"Signed-in user is not {user_id}")
        return session

    def check_generation(self, generation: int) -> None:
        if generation != self._generation:
            raise SessionSuperseded("Session changed while the operation was running")

    # ------------------------------------------------------------------
    # Sign-in
    # ------------------------------------------------------------------

    def sign_in(self, email: str, password: str, remember: bool = False) -> Session:
        email = self.email_policy.validate(email)
        if not password:
            raise InvalidInput("Please enter your password.")

        prior = self._begin_authenticating()
        try:
            session = self._authenticate(email, password)
        except Exception:
            self._restore_state(prior)
            raise

        remembered = RememberedCredentials(email=email, password=password) if remember else None
        return self._complete_sign_in(session, remembered, forget_remembered=not remember)

    def _authenticate(self, email: str, password: str) -> Session:
        try:
            response = self.gateway.login(email, password)
            return self._build_session(
                response.user, response.access_token, response.refresh_token, AuthSource.GATEWAY
            )
        except ApiError as e:
            if e.status_code in AUTH_FAILURE_STATUSES:
                raise AuthenticationFailed(str(e)) from e
            if e.status_code not in FALLBACK_STATUSES:
                raise
            logger.warning("Gateway login unavailable, using direct backend", status=e.status_code)
        except NetworkError as e:
            logger.warning("Gateway unreachable, using direct backend", kind=e.kind, attempts=e.attempts)

        try:
            token = self.direct_auth.sign_in_with_password(email, password)
        except ApiError as e:
            if e.status_code in AUTH_FAILURE_STATUSES:
                raise AuthenticationFailed(str(e)) from e
            raise
        return self._build_session(token.user, token.access_token, token.refresh_token, AuthSource.DIRECT)

    def _build_session(
        self,
        user: RemoteUser,
        access_token: str,
        refresh_token: Optional[str],
        source: AuthSource,
    ) -> Session:
        display_name = user.display_name
        if not display_name and source == AuthSource.DIRECT:
            display_name = self._lookup_display_name(user.id, access_token)
        return Session(
            access_token=access_token,
            refresh_token=refresh_token,
            user_id=user.id,
            email=user.email,
            display_name=display_name,
            source=source,
        )

    def _lookup_display_name(self, user_id: str, token: str) -> Optional[str]:
        """Profile row lookup for direct-backend sessions; best-effort."""
        if self.table_client is None:
            return None
        try:
            rows = self.table_client.select(
                "users", {"id": user_id}, token=token, columns="display_name", limit=1
            )
        except (ApiError, NetworkError) as e:
            logger.debug("Profile lookup failed", user_id=user_id, error=str(e))
            return None
        if rows and isinstance(rows[0], dict):
            return rows[0].get("display_name")
        return None

    def _complete_sign_in(
        self,
        session: Session,
        remembered: Optional[RememberedCredentials] = None,
        forget_remembered: bool = False,
    ) -> Session:
        previous_user_id, resumed = self.owner.run(self._establish, session, remembered, forget_remembered)
        logger.info("User signed in", user_id=session.user_id, source=session.source.value)
        if previous_user_id is not None and previous_user_id != session.user_id:
            self.events.publish(UserSwitched(previous_user_id=previous_user_id, user_id=session.user_id))
        self.events.publish(UserSignedIn(user_id=session.user_id, email=session.email, resumed=resumed))
        return session

    def _establish(
        self,
        session: Session,
        remembered: Optional[RememberedCredentials],
        forget_remembered: bool,
    ) -> Tuple[Optional[str], bool]:
        """
        Owner thread. Persist first, then flip.

        Returns the previous in-process user id and whether the persisted
        session already belonged to this user.
        """
        resumed = self._load_snapshot().get("user_id") == session.user_id
        snapshot = json.dumps(
            {
                "user_id": session.user_id,
                "email": session.email,
                "display_name": session.display_name,
                "source": session.source.value,
            }
        )
        writes: List[Tuple[str, Optional[str]]] = [
            (SESSION_USER_KEY, snapshot),
            (REFRESH_TOKEN_KEY, session.refresh_token),
            (ACCESS_TOKEN_KEY, session.access_token),
        ]
        for key, value in writes:
            ok = self.credentials.put(key, value) if value is not None else self.credentials.delete(key)
            if not ok:
                for k in SESSION_KEYS:
                    self.credentials.delete(k)
                self._session = None
                self._state = SessionState.LOGGED_OUT
                self._generation += 1
                raise CredentialStoreError(f"Could not persist {key}")

        if remembered is not None:
            stored = self.credentials.put(REMEMBERED_EMAIL_KEY, remembered.email) and self.credentials.put(
                REMEMBERED_PASSWORD_KEY, remembered.password
            )
            if not stored:
                logger.warning("Could not remember credentials", user_id=session.user_id)
        elif forget_remembered:
            self._forget_remembered()

        previous_user_id = self._last_user_id
        self._session = session
        self._state = SessionState.LOGGED_IN
        self._generation += 1
        self._last_user_id = session.user_id
        return previous_user_id, resumed

    def _begin_authenticating(self) -> SessionState:
        def flip():
            prior = self._state
            self._state = SessionState.AUTHENTICATING
            return prior
        return self.owner.run(flip)

    def _restore_state(self, prior: SessionState) -> None:
        def restore():
            if prior == SessionState.LOGGED_IN and self._session is not None:
                self._state = SessionState.LOGGED_IN
            else:
                self._state = SessionState.LOGGED_OUT
        self.owner.run(restore)

    # ------------------------------------------------------------------
    # Sign-up
    # ------------------------------------------------------------------

    def sign_up(self, email: str, password: str, display_name: Optional[str] = None) -> SignUpResult:
        email = self.email_policy.validate(email)
        self.password_policy.validate(password)
        display_name = (display_name or "").strip() or None

        prior = self._begin_authenticating()
        try:
            result = self._register(email, password, display_name)
        except Exception:
            self._restore_state(prior)
            raise

        if result.session is not None:
            self._complete_sign_in(result.session)
        else:
            self._restore_state(prior)
            logger.info("Sign-up awaiting email confirmation")
        return result

    def _register(self, email: str, password: str, display_name: Optional[str]) -> SignUpResult:
        gateways = [(self.gateway, AuthSource.GATEWAY)]
        if self.alternate_gateway is not None:
            gateways.append((self.alternate_gateway, AuthSource.ALTERNATE_GATEWAY))

        for client, source in gateways:
            try:
                response = client.register(email, password, display_name)
            except ApiError as e:
                self._raise_for_signup_rejection(e)
                if e.status_code not in FALLBACK_STATUSES:
                    raise
                logger.warning("Registration endpoint unavailable", endpoint=client.name, status=e.status_code)
                continue
            except NetworkError as e:
                logger.warning("Registration endpoint unreachable", endpoint=client.name, kind=e.kind)
                continue

            if not response.access_token:
                return SignUpResult(confirmation_required=True, message=CONFIRMATION_MESSAGE)
            session = self._build_session(response.user, response.access_token, response.refresh_token, source)
            return SignUpResult(session=session, message="Account created.")

        try:
            response = self.direct_auth.sign_up(email, password, display_name)
        except ApiError as e:
            self._raise_for_signup_rejection(e)
            raise

        if response.access_token and response.user is not None:
            session = self._build_session(
                response.user, response.access_token, response.refresh_token, AuthSource.DIRECT
            )
            if display_name and not session.display_name:
                session = session.model_copy(update={"display_name": display_name})
            return SignUpResult(session=session, message="Account created.")
        if response.confirmation_required:
            return SignUpResult(confirmation_required=True, message=CONFIRMATION_MESSAGE)
        raise ApiError("Sign-up returned neither a session nor a confirmation", status_code=502)

    @staticmethod
    def _raise_for_signup_rejection(error: ApiError) -> None:
        if _is_conflict(error):
            raise EmailAlreadyRegistered(str(error)) from error
        if error.status_code in (400, 422):
            raise InvalidInput(str(error)) from error

    # ------------------------------------------------------------------
    # Auto-login
    # ------------------------------------------------------------------

    def auto_login(self) -> Optional[Session]:
        """
        Restore the session at launch.

        Skipped (returns None) while another call is running or when the
        previous call started less than auto_login_throttle_seconds ago.
        """
        with self._throttle_lock:
            now = self._clock()
            if self._auto_login_running:
                logger.debug("Auto-login already running; skipped")
                return None
            if self._last_auto_login is not None and now - self._last_auto_login < self.auto_login_throttle_seconds:
                logger.debug("Auto-login throttled")
                return None
            self._auto_login_running = True
            self._last_auto_login = now

        try:
            return self._auto_login()
        finally:
            with self._throttle_lock:
                self._auto_login_running = False
            if self._state == SessionState.AUTHENTICATING:
                self._restore_state(SessionState.LOGGED_OUT)

    def _auto_login(self) -> Optional[Session]:
        if self.is_logged_in:
            return self._session

        token = self.credentials.get(ACCESS_TOKEN_KEY)
        if not token:
            return self._regenerate()

        self._begin_authenticating()
        try:
            validated = self.gateway.validate(token)
        except NetworkError as e:
            # Keep the token; the next launch can validate it
            logger.warning("Gateway unreachable during auto-login", kind=e.kind)
            return None
        except ApiError as e:
            logger.info("Stored session rejected", status=e.status_code)
            self.owner.run(self._clear_persisted_session)
            return self._regenerate()

        snapshot = self._load_snapshot()
        user = validated.user
        try:
            source = AuthSource(snapshot.get("source", AuthSource.GATEWAY.value))
        except ValueError:
            source = AuthSource.GATEWAY
        session = Session(
            access_token=token,
            refresh_token=self.credentials.get(REFRESH_TOKEN_KEY),
            user_id=user.id,
            email=user.email or snapshot.get("email", ""),
            display_name=user.display_name or snapshot.get("display_name"),
            source=source,
        )
        return self._complete_sign_in(session)

    def _regenerate(self) -> Optional[Session]:
        """Sign in again with remembered credentials, if the user opted in."""
        remembered = self.remembered_credentials()
        if remembered is None:
            return None
        try:
            return self.sign_in(remembered.email, remembered.password, remember=True)
        except (AuthenticationFailed, InvalidInput) as e:
            logger.warning("Remembered credentials rejected; forgetting them", error=str(e))
            self.owner.run(self._forget_remembered)
            return None
        except NetworkError as e:
            logger.warning("Could not regenerate session", kind=e.kind)
            return None

    def remembered_credentials(self) -> Optional[RememberedCredentials]:
        email = self.credentials.get(REMEMBERED_EMAIL_KEY)
        password = self.credentials.get(REMEMBERED_PASSWORD_KEY)
        if not email or not password:
            return None
        return RememberedCredentials(email=email, password=password)

    def _load_snapshot(self) -> dict:
        raw = self.credentials.get(SESSION_USER_KEY)
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def _clear_persisted_session(self) -> None:
        for key in SESSION_KEYS:
            if not self.credentials.delete(key):
                logger.error("Could not delete persisted session key", key=key)

    def _forget_remembered(self) -> bool:
        ok = True
        for key in REMEMBERED_KEYS:
            ok = self.credentials.delete(key) and ok
        return ok

    # ------------------------------------------------------------------
    # Sign-out / password reset
    # ------------------------------------------------------------------

    def sign_out(self) -> None:
        session = self._session
        if session is not None:
            self._remote_logout(session)

        user_id, failed_keys, wipe_error = self.owner.run(self._teardown)
        logger.info("User signed out", user_id=user_id)
        self.events.publish(UserSignedOut(user_id=user_id))

        if wipe_error is not None:
            raise wipe_error
        if failed_keys:
            raise CredentialStoreError(f"Could not delete: {', '.join(failed_keys)}")

    def _remote_logout(self, session: Session) -> None:
        try:
            if session.source == AuthSource.DIRECT:
                self.direct_auth.sign_out(session.access_token)
            elif session.source == AuthSource.ALTERNATE_GATEWAY and self.alternate_gateway is not None:
                self.alternate_gateway.logout(session.access_token)
            else:
                self.gateway.logout(session.access_token)
        except (ApiError, NetworkError) as e:
            logger.warning("Remote logout failed", user_id=session.user_id, error=str(e))

    def _teardown(self):
        """Owner thread. Forget everything about the current user."""
        user_id = self._session.user_id if self._session else None
        self._session = None
        self._state = SessionState.LOGGED_OUT
        self._generation += 1

        failed_keys = [k for k in SESSION_KEYS + REMEMBERED_KEYS if not self.credentials.delete(k)]
        wipe_error: Optional[PersistenceError] = None
        try:
            self.local_store.wipe_all()
        except PersistenceError as e:
            logger.error("Local store wipe failed during sign-out", error=str(e))
            wipe_error = e
        return user_id, failed_keys, wipe_error

    def reset_password(self, email: str) -> None:
        email = self.email_policy.validate(email)
        try:
            self.gateway.reset_password(email)
            return
        except ApiError as e:
            if e.status_code not in FALLBACK_STATUSES:
                raise
            logger.warning("Gateway password reset unavailable, using direct backend", status=e.status_code)
        except NetworkError as e:
            logger.warning("Gateway unreachable, using direct backend", kind=e.kind)
        self.direct_auth.recover(email)
