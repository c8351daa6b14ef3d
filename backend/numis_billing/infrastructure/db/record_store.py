"""
Record Store Client

Async client for the PocketBase-style HTTP collection store that holds
subscription records. The reconciler needs only equality filters plus
create and update, so that is all this client exposes.

Authentication uses an admin bearer token obtained from the store's
password-auth endpoint; the token is cached and re-acquired once on 401.
"""

import logging
from typing import Any, Optional

import httpx

from numis_billing.infrastructure.exceptions import (
    RecordStoreError,
    RecordStoreTimeoutError,
)


logger = logging.getLogger(__name__)


def equals_filter(field: str, value: str) -> str:
    """Build a `field = "value"` filter with the value safely quoted."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'{field} = "{escaped}"'


class RecordStoreClient:
    """
    Minimal collection store client.

    Each call opens a short-lived httpx.AsyncClient bounded by the configured
    timeout; timeouts surface as RecordStoreTimeoutError.
    """

    PAGE_SIZE = 50

    def __init__(
        self,
        base_url: str,
        admin_email: Optional[str],
        admin_password: Optional[str],
        auth_path: str = "/api/admins/auth-with-password",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._admin_email = admin_email
        self._admin_password = admin_password
        self._auth_path = auth_path
        self._timeout = timeout
        self._transport = transport
        self._token: Optional[str] = None

    # =========================================================================
    # Collection Operations
    # =========================================================================

    async def list(self, collection: str, filter: str) -> list[dict[str, Any]]:
        """Return the records of a collection matching a filter expression."""
        response = await self._authorized_request(
            "GET",
            f"/api/collections/{collection}/records",
            operation="list",
            collection=collection,
            params={"filter": filter, "perPage": self.PAGE_SIZE},
        )
        return response.json().get("items") or []

    async def create(self, collection: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Create a record and return it as stored."""
        response = await self._authorized_request(
            "POST",
            f"/api/collections/{collection}/records",
            operation="create",
            collection=collection,
            json=fields,
        )
        return response.json()

    async def update(
        self,
        collection: str,
        record_id: str,
        fields: dict[str, Any],
    ) -> dict[str, Any]:
        """Patch a record in place and return it as stored."""
        response = await self._authorized_request(
            "PATCH",
            f"/api/collections/{collection}/records/{record_id}",
            operation="update",
            collection=collection,
            json=fields,
        )
        return response.json()

    # =========================================================================
    # Transport
    # =========================================================================

    async def _authenticate(self) -> str:
        if not self._admin_email or not self._admin_password:
            raise RecordStoreError(
                "Record store admin credentials not configured",
                operation="auth",
            )

        response = await self._send(
            "POST",
            self._auth_path,
            operation="auth",
            json={"identity": self._admin_email, "password": self._admin_password},
        )
        if not response.is_success:
            raise RecordStoreError(
                "Failed to authenticate as admin",
                operation="auth",
                status_code=response.status_code,
            )

        token = response.json().get("token")
        if not token:
            raise RecordStoreError("Admin auth response had no token", operation="auth")
        return token

    async def _authorized_request(
        self,
        method: str,
        path: str,
        operation: str,
        collection: str,
        **kwargs: Any,
    ) -> httpx.Response:
        for attempt in range(2):
            if self._token is None:
                self._token = await self._authenticate()

            response = await self._send(
                method,
                path,
                operation=operation,
                collection=collection,
                headers={"Authorization": f"Bearer {self._token}"},
                **kwargs,
            )

            if response.status_code == 401 and attempt == 0:
                logger.info("Record store token rejected, re-authenticating")
                self._token = None
                continue
            break

        if not response.is_success:
            logger.error(
                f"Record store {operation} on {collection} failed: "
                f"{response.status_code} {response.text[:200]}"
            )
            raise RecordStoreError(
                f"Record store {operation} failed",
                operation=operation,
                collection=collection,
                status_code=response.status_code,
            )
        return response

    async def _send(
        self,
        method: str,
        path: str,
        operation: str,
        collection: Optional[str] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                return await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise RecordStoreTimeoutError(
                f"Record store {operation} timed out",
                operation=operation,
                collection=collection,
                original_error=e,
            )
        except httpx.HTTPError as e:
            raise RecordStoreError(
                f"Record store {operation} request error: {e}",
                operation=operation,
                collection=collection,
                original_error=e,
            )
