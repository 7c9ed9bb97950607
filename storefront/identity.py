"""Client for the hosted identity provider's admin API."""
import logging
from typing import Any, Optional
from uuid import UUID

import httpx

from .errors import UpstreamServiceError

logger = logging.getLogger(__name__)

ADMIN_USERS_PATH = "/auth/v1/admin/users"


class IdentityProviderClient:
    """Creates, updates and deletes accounts with the service-role key."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={
                "apikey": service_key,
                "Authorization": f"Bearer {service_key}",
            },
        )

    async def create_user(self, email: str, password: str, full_name: Optional[str] = None) -> UUID:
        """Create a confirmed account and return its id."""
        data = await self._request(
            "POST",
            ADMIN_USERS_PATH,
            json={
                "email": email,
                "password": password,
                "email_confirm": True,
                "user_metadata": {"full_name": full_name},
            },
        )
        user_id = UUID(data["id"])
        logger.info(f"Identity provider created account {user_id}")
        return user_id

    async def update_user(
        self,
        user_id: UUID,
        email: Optional[str] = None,
        password: Optional[str] = None,
    ):
        changes: dict[str, Any] = {}
        if email:
            changes["email"] = email
        if password:
            changes["password"] = password
        if not changes:
            return

        await self._request("PUT", f"{ADMIN_USERS_PATH}/{user_id}", json=changes)
        logger.info(f"Identity provider updated account {user_id}")

    async def delete_user(self, user_id: UUID):
        await self._request("DELETE", f"{ADMIN_USERS_PATH}/{user_id}")
        logger.info(f"Identity provider deleted account {user_id}")

    async def close(self):
        await self.client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        try:
            response = await self.client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            message = _error_message(e.response)
            logger.error(f"Identity provider {method} {path} failed: {message}")
            raise UpstreamServiceError(f"Identity provider error: {message}")
        except httpx.HTTPError as e:
            logger.error(f"Identity provider unreachable: {str(e)}")
            raise UpstreamServiceError(f"Identity provider unavailable: {str(e)}")

        if not response.content:
            return {}
        return response.json()


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    return body.get("msg") or body.get("message") or body.get("error_description") or str(body)
