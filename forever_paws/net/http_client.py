"""Resilient HTTP client with a tiered transport retry ladder"""

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_none

from ..utils.exceptions import NetworkError
from ..utils.logger import get_logger
from ..utils.sanitize import to_wire
from .retry_policy import AttemptTier, RetryPolicy
from .tls import TLSTierAdapter
from .tunnel import is_behind_tunnel

logger = get_logger(__name__)


@dataclass
class HttpRequest:
    method: str
    url: str
    params: Optional[Dict[str, Any]] = None
    json_body: Any = None
    headers: Dict[str, str] = field(default_factory=dict)
    # Backend anon/service key, sent as "apikey"
    api_key: Optional[str] = None


@dataclass
class HttpResponse:
    status_code: int
    content: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)
    url: str = ""

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Parsed body, or None when the body is empty or not JSON."""
        if not self.content:
            return None
        try:
            return json.loads(self.content)
        except ValueError:
            return None

    @classmethod
    def from_requests(cls, response: requests.Response) -> "HttpResponse":
        return cls(
            status_code=response.status_code,
            content=response.content or b"",
            headers=dict(response.headers),
            url=response.url,
        )


class _TransportFailure(Exception):
    """Internal: a transport-class failure that advances the tier ladder"""

    def __init__(self, kind: str, original: Exception):
        self.kind = kind
        self.original = original
        super().__init__(str(original))


def _has_cause(exc: BaseException, types) -> bool:
    """Search the exception chain, urllib3 reasons and nested args for `types`."""
    seen = set()
    pending = [exc]
    while pending:
        current = pending.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        if isinstance(current, types):
            return True
        if isinstance(current, BaseException):
            pending.extend([current.__cause__, current.__context__, getattr(current, "reason", None)])
            pending.extend(arg for arg in current.args if isinstance(arg, (BaseException, tuple)))
        elif isinstance(current, tuple):
            pending.extend(current)
    return False


def classify_transport_error(exc: Exception) -> Optional[str]:
    """
    Map a requests exception to a NetworkError kind.

    Returns None when the exception is not transport-class (bad URL, invalid
    header...), which must not be retried.
    """
    if isinstance(exc, requests.exceptions.SSLError):
        return NetworkError.TLS_HANDSHAKE
    if isinstance(exc, requests.exceptions.Timeout):
        return NetworkError.TIMEOUT
    if isinstance(exc, requests.exceptions.ChunkedEncodingError):
        return NetworkError.CONNECTION_RESET
    if isinstance(exc, requests.exceptions.ConnectionError):
        if _has_cause(exc, ConnectionResetError):
            return NetworkError.CONNECTION_RESET
        return NetworkError.HOST_UNREACHABLE
    return None


class ResilientHttpClient:
    """
    Executes requests through an ordered list of attempt tiers.

    Only transport failures (TLS handshake, unreachable host, timeout,
    connection reset) advance to the next tier. Any HTTP response, whatever
    its status, is returned to the caller as-is.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        user_agent: str = "ForeverPaws/1.0",
        verify_ssl: bool = True,
        detect_tunnel: bool = True,
        tunnel_detector: Optional[Callable[[], bool]] = None,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ):
        self.policy = policy or RetryPolicy.default()
        self.user_agent = user_agent
        self.verify_ssl = verify_ssl
        self.detect_tunnel = detect_tunnel
        self._tunnel_detector = tunnel_detector or is_behind_tunnel
        self._session_factory = session_factory
        self._sessions: Dict[str, requests.Session] = {}

    def close(self) -> None:
        for session in self._sessions.values():
            session.close()
        self._sessions.clear()

    def _build_session(self, tier: AttemptTier) -> requests.Session:
        session = self._session_factory()
        session.mount("https://", TLSTierAdapter(tier, verify=self.verify_ssl))
        session.mount(
            "http://",
            HTTPAdapter(
                pool_connections=1 if tier.fresh_transport else 10,
                pool_maxsize=tier.pool_maxsize,
                max_retries=0,
            ),
        )
        return session

    def _session_for(self, tier: AttemptTier) -> requests.Session:
        if tier.fresh_transport:
            return self._build_session(tier)
        if tier.name not in self._sessions:
            self._sessions[tier.name] = self._build_session(tier)
        return self._sessions[tier.name]

    def _behind_tunnel(self) -> bool:
        if not self.detect_tunnel:
            return False
        try:
            return bool(self._tunnel_detector())
        except Exception as e:
            logger.debug("Tunnel detection failed", error=str(e))
            return False

    def compose_headers(
        self,
        request: HttpRequest,
        tier: AttemptTier,
        auth_token: Optional[str],
        behind_tunnel: bool,
    ) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "User-Agent": self.user_agent,
        }
        if request.api_key:
            headers["apikey"] = request.api_key
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
        elif request.api_key:
            headers["Authorization"] = f"Bearer {request.api_key}"

        keep_alive = tier.keep_alive if tier.keep_alive is not None else not behind_tunnel
        headers["Connection"] = "keep-alive" if keep_alive else "close"
        if tier.no_cache:
            headers["Cache-Control"] = "no-cache"
            headers["Pragma"] = "no-cache"

        headers.update(request.headers)
        return headers

    def _attempt(
        self,
        request: HttpRequest,
        tier: AttemptTier,
        attempt_number: int,
        auth_token: Optional[str],
        behind_tunnel: bool,
    ) -> HttpResponse:
        session = self._session_for(tier)
        headers = self.compose_headers(request, tier, auth_token, behind_tunnel)
        body = to_wire(request.json_body) if request.json_body is not None else None
        try:
            logger.debug(
                "Sending request",
                method=request.method,
                url=request.url,
                tier=tier.name,
                attempt=attempt_number,
                timeout=tier.timeout,
                connection=headers["Connection"],
            )
            response = session.request(
                method=request.method,
                url=request.url,
                params=request.params,
                json=body,
                headers=headers,
                timeout=tier.timeout,
                verify=self.verify_ssl,
            )
            return HttpResponse.from_requests(response)
        except requests.exceptions.RequestException as e:
            kind = classify_transport_error(e)
            if kind is None:
                logger.error(
                    "Request failed before reaching the network",
                    method=request.method,
                    url=request.url,
                    error=str(e),
                )
                raise NetworkError(f"Request failed: {e}", attempts=attempt_number) from e
            logger.warning(
                "Transport failure",
                method=request.method,
                url=request.url,
                tier=tier.name,
                attempt=attempt_number,
                kind=kind,
                error=str(e),
            )
            raise _TransportFailure(kind, e) from e
        finally:
            if tier.fresh_transport:
                session.close()

    def execute(self, request: HttpRequest, auth_token: Optional[str] = None) -> HttpResponse:
        """
        Execute a request through the tier ladder.

        Returns:
            The first HTTP response obtained (any status code)

        Raises:
            NetworkError: every tier failed at the transport level
        """
        behind_tunnel = self._behind_tunnel()
        retrying = Retrying(
            stop=stop_after_attempt(len(self.policy)),
            retry=retry_if_exception_type(_TransportFailure),
            wait=wait_none(),
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    number = attempt.retry_state.attempt_number
                    tier = self.policy.tier(number)
                    response = self._attempt(request, tier, number, auth_token, behind_tunnel)
                    logger.debug(
                        "Received response",
                        method=request.method,
                        url=request.url,
                        status_code=response.status_code,
                        tier=tier.name,
                    )
                    return response
        except _TransportFailure as failure:
            logger.error(
                "All transport tiers failed",
                method=request.method,
                url=request.url,
                kind=failure.kind,
                attempts=len(self.policy),
            )
            raise NetworkError(
                f"Network request failed after {len(self.policy)} attempts: {failure.original}",
                kind=failure.kind,
                attempts=len(self.policy),
            ) from failure.original
        raise NetworkError("Network request was not attempted", attempts=0)
