"""
Purehealth Auth API Client.

Async HTTP client for the WebAuthn endpoints, used by the authentication
orchestrator. Uses httpx; session tokens from a verified ceremony
are applied with ``remember_session`` and sent as a bearer token afterwards.
"""

import logging
from typing import Any
from uuid import UUID

import httpx

logger = logging.getLogger(__name__)


class APIError(Exception):
    """
    Exception raised for API errors.

    ``status_code`` is 0 when the request never got a response.
    """

    def __init__(
        self,
        status_code: int,
        message: str,
        error: str | None = None,
        response_body: Any = None,
    ):
        self.status_code = status_code
        self.message = message
        self.error = error
        self.response_body = response_body
        super().__init__(f"API Error {status_code}: {message}")

    @property
    def is_network_error(self) -> bool:
        return self.status_code == 0


class PurehealthAuthClient:
    """Async client for the Purehealth WebAuthn API."""

    def __init__(
        self,
        base_url: str,
        access_token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the API client.

        Args:
            base_url: Base URL of the API (e.g., "http://localhost:5000")
            access_token: Session token of an already signed-in user
            timeout: Request timeout in seconds (default: 30.0)
            transport: Optional httpx transport (ASGITransport in tests)
        """
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "PurehealthAuthClient":
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Content-Type": "application/json"},
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
    ) -> Any:
        """
        Make an HTTP request to the API.

        Raises:
            APIError: If the request fails or the API answers with an error
        """
        client = await self._ensure_client()
        headers = {}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"

        try:
            response = await client.request(method=method, url=path, json=json, headers=headers)
        except httpx.TimeoutException as e:
            raise APIError(0, f"Request timed out: {e}") from e
        except httpx.RequestError as e:
            raise APIError(0, f"Request failed: {e}") from e

        if response.status_code >= 400:
            try:
                error_body = response.json()
            except ValueError:
                error_body = response.text

            if isinstance(error_body, dict):
                message = error_body.get("message") or error_body.get("detail") or str(error_body)
                error = error_body.get("error")
            else:
                message, error = str(error_body), None
            raise APIError(
                status_code=response.status_code,
                message=str(message),
                error=error,
                response_body=error_body,
            )

        if response.status_code == 204:
            return {}
        return response.json()

    def remember_session(self, result: dict[str, Any]) -> None:
        """Use the session token from a verified ceremony on later requests."""
        token = result.get("access_token")
        if token:
            self.access_token = token

    # =========================================================================
    # Registration
    # =========================================================================

    async def temp_registration_options(self, profile: dict[str, Any]) -> dict[str, Any]:
        """Start registration for a new user. Returns temp_registration_id + options."""
        return await self._request("POST", "/api/webauthn/registration/temp-options", json=profile)

    async def verify_temp_registration(
        self,
        temp_registration_id: str,
        response: dict[str, Any],
        profile: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Complete new-user registration. Returns the user and session tokens.

        The tokens are not applied here; see ``remember_session``.
        """
        payload: dict[str, Any] = {
            "temp_registration_id": temp_registration_id,
            "response": response,
        }
        if profile is not None:
            payload["profile"] = profile
        return await self._request("POST", "/api/webauthn/registration/verify-temp", json=payload)

    async def registration_options(self, user_id: UUID | str, is_primary: bool = True) -> dict[str, Any]:
        return await self._request(
            "POST",
            "/api/webauthn/registration/options",
            json={"user_id": str(user_id), "is_primary": is_primary},
        )

    async def verify_registration(
        self,
        user_id: UUID | str,
        response: dict[str, Any],
        is_primary: bool = True,
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            "/api/webauthn/registration/verify",
            json={"user_id": str(user_id), "response": response, "is_primary": is_primary},
        )

    # =========================================================================
    # Authentication
    # =========================================================================

    async def authentication_options(self, email: str) -> dict[str, Any]:
        """Returns user_id + options for the account with this email."""
        return await self._request(
            "POST", "/api/webauthn/authentication/options", json={"email": email}
        )

    async def verify_authentication(self, user_id: UUID | str, response: dict[str, Any]) -> dict[str, Any]:
        """Returns the user and session tokens."""
        return await self._request(
            "POST",
            "/api/webauthn/authentication/verify",
            json={"user_id": str(user_id), "response": response},
        )

    # =========================================================================
    # Passkeys and Profile
    # =========================================================================

    async def list_credentials(self) -> list[dict[str, Any]]:
        result = await self._request("GET", "/api/webauthn/credentials")
        return result["credentials"]

    async def set_primary_credential(self, credential_id: UUID | str) -> dict[str, Any]:
        return await self._request("PUT", f"/api/webauthn/credentials/{credential_id}/primary")

    async def delete_credential(self, credential_id: UUID | str) -> dict[str, Any]:
        return await self._request("DELETE", f"/api/webauthn/credentials/{credential_id}")

    async def get_me(self) -> dict[str, Any]:
        return await self._request("GET", "/api/users/me")
