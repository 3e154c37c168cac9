"""HTTP context shared by every call to the edge backend."""

from typing import Optional

import httpx

from regis_client.clients.retry import RetryPolicy
from regis_client.config.settings import settings
from regis_client.utils.logger import logger


class ApiContext:
    """
    Owns the httpx client (and its session cookies) for one client lifetime.

    Passed explicitly to the orchestrator and auth interceptor instead of
    living in module state. Use ``async with ApiContext.create() as ctx``
    or call ``aclose()`` on teardown.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        retry_policy: Optional[RetryPolicy] = None,
        request_timeout: Optional[float] = None,
    ):
        self.client = client
        self.retry_policy = retry_policy if retry_policy is not None else RetryPolicy.from_settings()
        self.request_timeout = settings.REQUEST_TIMEOUT_SECONDS if request_timeout is None else request_timeout

    @classmethod
    def create(
        cls,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs,
    ) -> "ApiContext":
        """
        Build a context for the configured backend.

        Args:
            base_url: Overrides settings.API_BASE_URL
            transport: Custom httpx transport (tests use httpx.MockTransport)
            **kwargs: Forwarded to ApiContext (retry_policy, request_timeout)

        Returns:
            A ready ApiContext
        """
        # Relative endpoint paths resolve under the base, so it must end in "/"
        url = (base_url or settings.API_BASE_URL).rstrip("/") + "/"
        logger.info(f"Creating API context for {url}")
        client = httpx.AsyncClient(
            base_url=url,
            transport=transport,
            # Request budgets are enforced by CancellationScope
            timeout=httpx.Timeout(None, connect=10.0),
            headers={"Accept": "application/json"},
        )
        return cls(client, **kwargs)

    @property
    def base_url(self) -> str:
        return str(self.client.base_url)

    async def aclose(self) -> None:
        await self.client.aclose()
        logger.debug("API context closed")

    async def __aenter__(self) -> "ApiContext":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
