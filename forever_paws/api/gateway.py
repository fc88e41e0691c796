"""Client for the primary API gateway"""

from typing import Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ..net.http_client import HttpRequest, HttpResponse, ResilientHttpClient
from ..utils.exceptions import ApiError
from ..utils.logger import get_logger
from .schemas import (
    CollectionResponse,
    GatewayAuthResponse,
    GatewayRegisterResponse,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    ValidateResponse,
    error_message,
    unwrap_envelope,
)

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def raise_for_status(response: HttpResponse, action: str) -> None:
    """Raise ApiError carrying the status code for any HTTP error response."""
    if response.ok:
        return
    body = response.json()
    message = error_message(body, f"{action} failed with HTTP {response.status_code}")
    raise ApiError(message, status_code=response.status_code)


def parse_body(response: HttpResponse, model: Type[ModelT], action: str) -> ModelT:
    body = unwrap_envelope(response.json())
    try:
        return model.model_validate(body)
    except ValidationError as e:
        logger.error("Malformed response body", action=action, error=str(e))
        # Treated like a bad gateway so callers can fall back
        raise ApiError(f"{action} returned a malformed response", status_code=502) from e


class GatewayClient:
    """Auth and collection endpoints of one gateway deployment"""

    def __init__(self, http: ResilientHttpClient, base_url: str, name: str = "gateway"):
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.name = name

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _send(
        self,
        method: str,
        path: str,
        body: Optional[BaseModel] = None,
        token: Optional[str] = None,
    ) -> HttpResponse:
        request = HttpRequest(method=method, url=self._url(path), json_body=body)
        return self.http.execute(request, auth_token=token)

    def login(self, email: str, password: str) -> GatewayAuthResponse:
        response = self._send("POST", "/auth/login", LoginRequest(email=email, password=password))
        raise_for_status(response, "Login")
        return parse_body(response, GatewayAuthResponse, "Login")

    def register(self, email: str, password: str, display_name: Optional[str]) -> GatewayRegisterResponse:
        response = self._send(
            "POST",
            "/auth/register",
            RegisterRequest(email=email, password=password, display_name=display_name),
        )
        raise_for_status(response, "Registration")
        return parse_body(response, GatewayRegisterResponse, "Registration")

    def validate(self, token: str) -> ValidateResponse:
        """GET /auth/validate. Any non-200 raises ApiError."""
        response = self._send("GET", "/auth/validate", token=token)
        if response.status_code != 200:
            raise ApiError(
                error_message(response.json(), "Token validation failed"),
                status_code=response.status_code,
            )
        return parse_body(response, ValidateResponse, "Token validation")

    def reset_password(self, email: str) -> None:
        response = self._send("POST", "/auth/reset-password", ResetPasswordRequest(email=email))
        raise_for_status(response, "Password reset")

    def logout(self, token: str) -> None:
        response = self._send("POST", "/auth/logout", token=token)
        raise_for_status(response, "Logout")

    def fetch_collection(self, collection: str, token: str) -> CollectionResponse:
        """GET /{collection} with bearer auth -> {data: [...]}"""
        response = self._send("GET", f"/{collection}", token=token)
        raise_for_status(response, f"Fetching {collection}")
        try:
            return CollectionResponse.parse(response.json(), collection)
        except ValueError as e:
            raise ApiError(str(e), status_code=502) from e

    def __repr__(self) -> str:
        return f"GatewayClient(name={self.name!r}, base_url={self.base_url!r})"
