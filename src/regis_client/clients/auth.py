"""Client-side session refresh for unauthorized responses."""

import httpx

from regis_client.clients.context import ApiContext
from regis_client.exceptions import AuthError
from regis_client.utils.logger import logger
from regis_client.utils.structured_logging import log_auth_refresh

REFRESH_ENDPOINT = "auth/refresh"
LOGOUT_ENDPOINT = "auth/logout"


class AuthInterceptor:
    """
    Handles 401 responses by refreshing the session cookie.

    The interceptor only reports whether the caller may replay; bounding the
    replay to once per original call is the caller's loop's job.
    """

    def __init__(self, context: ApiContext):
        self.context = context

    async def refresh_session(self) -> bool:
        """Return True if the refresh endpoint accepted the session."""
        try:
            response = await self.context.client.post(REFRESH_ENDPOINT)
        except httpx.HTTPError as e:
            logger.warning(f"Session refresh request failed: {e}")
            log_auth_refresh(success=False, reason=str(e))
            return False
        log_auth_refresh(success=response.is_success, status_code=response.status_code)
        return response.is_success

    async def logout(self) -> None:
        """Best-effort logout; failures are logged and ignored."""
        try:
            await self.context.client.post(LOGOUT_ENDPOINT)
            logger.info("Logged out after failed session refresh")
        except httpx.HTTPError as e:
            logger.debug(f"Ignoring logout failure: {e}")

    async def handle_unauthorized(self) -> None:
        """
        Recover from a 401 so the original request can be replayed.

        Raises:
            AuthError: If the session could not be refreshed
        """
        logger.info("Received 401, refreshing session")
        if await self.refresh_session():
            return
        await self.logout()
        raise AuthError("Session refresh failed", status_code=401)
