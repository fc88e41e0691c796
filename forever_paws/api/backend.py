"""
Direct backend clients: the hosted auth service and its REST table interface.

These bypass the gateway. Every request carries the anon key as "apikey".
"""

from typing import Any, Dict, List, Optional

from ..net.http_client import HttpRequest, HttpResponse, ResilientHttpClient
from ..utils.exceptions import ApiError
from ..utils.logger import get_logger
from .gateway import parse_body, raise_for_status
from .schemas import (
    DirectSignupRequest,
    DirectSignupResponse,
    DirectTokenResponse,
    LoginRequest,
    ResetPasswordRequest,
)

logger = get_logger(__name__)


class DirectAuthClient:
    """/auth/v1 endpoints of the hosted auth service"""

    def __init__(self, http: ResilientHttpClient, base_url: str, anon_key: str):
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key

    def _send(
        self,
        method: str,
        path: str,
        body: Any = None,
        params: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None,
    ) -> HttpResponse:
        request = HttpRequest(
            method=method,
            url=f"{self.base_url}{path}",
            params=params,
            json_body=body,
            api_key=self.anon_key,
        )
        return self.http.execute(request, auth_token=token)

    def sign_in_with_password(self, email: str, password: str) -> DirectTokenResponse:
        response = self._send(
            "POST",
            "/auth/v1/token",
            body=LoginRequest(email=email, password=password),
            params={"grant_type": "password"},
        )
        raise_for_status(response, "Direct sign-in")
        return parse_body(response, DirectTokenResponse, "Direct sign-in")

    def sign_up(self, email: str, password: str, display_name: Optional[str] = None) -> DirectSignupResponse:
        data = {"display_name": display_name} if display_name else {}
        response = self._send(
            "POST",
            "/auth/v1/signup",
            body=DirectSignupRequest(email=email, password=password, data=data),
        )
        raise_for_status(response, "Direct sign-up")
        return parse_body(response, DirectSignupResponse, "Direct sign-up")

    def recover(self, email: str) -> None:
        """Send a password recovery email."""
        response = self._send("POST", "/auth/v1/recover", body=ResetPasswordRequest(email=email))
        raise_for_status(response, "Password recovery")

    def sign_out(self, token: str) -> None:
        response = self._send("POST", "/auth/v1/logout", token=token)
        raise_for_status(response, "Direct sign-out")


def eq_filters(filters: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """{"user_id": "u1"} -> {"user_id": "eq.u1"}"""
    out: Dict[str, str] = {}
    for column, value in (filters or {}).items():
        if isinstance(value, bool):
            value = "true" if value else "false"
        out[column] = f"eq.{value}"
    return out


class TableClient:
    """REST-over-HTTP table interface (/rest/v1/{table}) with equality filters"""

    def __init__(self, http: ResilientHttpClient, base_url: str, anon_key: str):
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key

    def _send(
        self,
        method: str,
        table: str,
        token: Optional[str],
        params: Optional[Dict[str, Any]] = None,
        body: Any = None,
        return_rows: bool = False,
    ) -> HttpResponse:
        headers = {"Prefer": "return=representation"} if return_rows else {}
        request = HttpRequest(
            method=method,
            url=f"{self.base_url}/rest/v1/{table}",
            params=params,
            json_body=body,
            headers=headers,
            api_key=self.anon_key,
        )
        return self.http.execute(request, auth_token=token)

    @staticmethod
    def _rows(response: HttpResponse, action: str) -> List[Dict[str, Any]]:
        raise_for_status(response, action)
        body = response.json()
        if body is None:
            return []
        if isinstance(body, dict):
            return [body]
        if not isinstance(body, list):
            raise ApiError(f"{action} returned a malformed response", status_code=502)
        return body

    def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None,
        columns: str = "*",
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"select": columns, **eq_filters(filters)}
        if limit is not None:
            params["limit"] = limit
        response = self._send("GET", table, token, params=params)
        return self._rows(response, f"Select from {table}")

    def insert(self, table: str, rows: Any, token: Optional[str] = None) -> List[Dict[str, Any]]:
        response = self._send("POST", table, token, body=rows, return_rows=True)
        return self._rows(response, f"Insert into {table}")

    def update(
        self,
        table: str,
        values: Dict[str, Any],
        filters: Dict[str, Any],
        token: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        if not filters:
            raise ValueError("update requires at least one filter")
        response = self._send("PATCH", table, token, params=eq_filters(filters), body=values, return_rows=True)
        return self._rows(response, f"Update {table}")

    def delete(self, table: str, filters: Dict[str, Any], token: Optional[str] = None) -> List[Dict[str, Any]]:
        if not filters:
            raise ValueError("delete requires at least one filter")
        response = self._send("DELETE", table, token, params=eq_filters(filters), return_rows=True)
        return self._rows(response, f"Delete from {table}")
