"""Request orchestration: cancellation, retries, auth recovery and parsing."""

import asyncio
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError

from regis_client.chat.models import ExecuteResult, SearchResult, StreamUpdate
from regis_client.chat.stream_parser import ChunkCallback, SSEDecoder, StreamState
from regis_client.clients.auth import AuthInterceptor
from regis_client.clients.cancellation import CancellationScope, CancelToken
from regis_client.clients.context import ApiContext
from regis_client.clients.retry import SleepFn, request_with_retry
from regis_client.exceptions import (
    AuthError,
    RateLimitError,
    StreamError,
    UnknownRequestError,
    error_for_status,
    normalize_error,
)
from regis_client.telemetry.request_metrics import RequestMetrics
from regis_client.utils.logger import logger
from regis_client.utils.structured_logging import (
    CorrelationContext,
    log_chat_request,
    log_chat_response,
)

EXECUTE_ENDPOINT = "execute"
STREAM_ENDPOINT = "stream"
HEALTH_ENDPOINT = "health"


class ExecuteResponse(BaseModel):
    """Body of a successful ``POST execute``."""
    success: bool = True
    response: str
    sources: List[SearchResult] = Field(default_factory=list)
    model_used: str = "unknown"
    grounding_performed: bool = False


class RequestOrchestrator:
    """
    Issues prompts to the edge backend.

    Every call runs inside a CancellationScope, sends through the retry
    controller and replays at most once after a successful session refresh.
    """

    def __init__(
        self,
        context: ApiContext,
        auth: Optional[AuthInterceptor] = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        """
        Initialize the orchestrator.

        Args:
            context: Shared HTTP context (client, retry policy, timeout)
            auth: Auth interceptor; defaults to one bound to ``context``
            sleep: Backoff sleep, injectable for tests
        """
        self.context = context
        self.auth = auth or AuthInterceptor(context)
        self._sleep = sleep

    async def execute(
        self,
        prompt: str,
        model: Optional[str] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> ExecuteResult:
        """
        Execute a prompt and wait for the whole answer.

        Raises:
            RequestError: Classified failure (see ErrorKind)
        """
        payload = self._payload(prompt, model, stream=True)

        async def handle(metrics: RequestMetrics) -> ExecuteResult:
            response = await self._send_with_recovery(EXECUTE_ENDPOINT, payload, False, metrics)
            try:
                body = ExecuteResponse.model_validate_json(response.content)
            except ValidationError as e:
                raise UnknownRequestError(f"Malformed response body: {e.error_count()} errors") from e
            metrics.response_length = len(body.response)
            return ExecuteResult(
                text=body.response,
                sources=body.sources,
                model_used=body.model_used,
                grounding_performed=body.grounding_performed,
            )

        return await self._call(EXECUTE_ENDPOINT, prompt, model, cancel_token, handle)

    async def execute_streaming(
        self,
        prompt: str,
        model: Optional[str] = None,
        on_chunk: Optional[ChunkCallback] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> ExecuteResult:
        """
        Execute a prompt over SSE, calling ``on_chunk`` as text arrives.

        Raises:
            StreamError: The server sent an error event
            RequestError: Any other classified failure
        """
        payload = self._payload(prompt, model)

        async def handle(metrics: RequestMetrics) -> ExecuteResult:
            response = await self._send_with_recovery(STREAM_ENDPOINT, payload, True, metrics)

            def deliver(text: str) -> None:
                metrics.record_chunk(text)
                if on_chunk:
                    on_chunk(text)

            state = await self._read_stream(response, SSEDecoder(deliver))
            if state.error:
                raise StreamError(state.error)
            return ExecuteResult(
                text=state.full_response,
                sources=list(state.sources),
                model_used=state.model_used or "unknown",
                grounding_performed=state.grounding_performed,
            )

        return await self._call(STREAM_ENDPOINT, prompt, model, cancel_token, handle)

    async def stream_updates(
        self,
        prompt: str,
        model: Optional[str] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> AsyncIterator[StreamUpdate]:
        """
        Iterate over a streamed answer.

        Yields one StreamUpdate per chunk, then a final update carrying the
        result. A failure is re-raised from the iterator after the buffered
        chunks have been yielded.
        """
        channel: "asyncio.Queue[Optional[StreamUpdate]]" = asyncio.Queue()

        async def produce() -> None:
            try:
                result = await self.execute_streaming(
                    prompt,
                    model,
                    on_chunk=lambda text: channel.put_nowait(StreamUpdate(content=text)),
                    cancel_token=cancel_token,
                )
                channel.put_nowait(StreamUpdate(result=result))
            finally:
                # close marker
                channel.put_nowait(None)

        producer = asyncio.ensure_future(produce())
        try:
            while True:
                update = await channel.get()
                if update is None:
                    break
                yield update
            await producer
        finally:
            if not producer.done():
                producer.cancel()
                await asyncio.gather(producer, return_exceptions=True)

    async def check_health(self) -> bool:
        """Return True if the backend health endpoint answers 2xx."""
        try:
            response = await self.context.client.get(HEALTH_ENDPOINT)
        except httpx.HTTPError as e:
            logger.debug(f"Health check failed: {e}")
            return False
        return response.is_success

    @staticmethod
    def _payload(prompt: str, model: Optional[str], stream: Optional[bool] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"prompt": prompt}
        if model:
            payload["model"] = model
        if stream is not None:
            payload["stream"] = stream
        return payload

    async def _call(
        self,
        endpoint: str,
        prompt: str,
        model: Optional[str],
        cancel_token: Optional[CancelToken],
        handle: Callable[[RequestMetrics], Awaitable[ExecuteResult]],
    ) -> ExecuteResult:
        metrics = RequestMetrics(endpoint)
        with CorrelationContext():
            log_chat_request(prompt=prompt, endpoint=endpoint, model=model)
            metrics.start_timer()
            try:
                with CancellationScope(self.context.request_timeout, cancel_token) as scope:
                    result = await scope.run(handle(metrics))
            except Exception as e:
                metrics.stop_timer()
                error = normalize_error(e)
                log_chat_response(
                    success=False,
                    error_kind=error.kind.value,
                    error_message=str(error),
                    **metrics.to_dict(),
                )
                if error is e:
                    raise
                raise error from e

            metrics.stop_timer()
            log_chat_response(success=True, **metrics.to_dict())
            logger.debug(metrics.format_stats())
            return result

    async def _send_with_recovery(
        self,
        endpoint: str,
        payload: Dict[str, Any],
        stream: bool,
        metrics: RequestMetrics,
    ) -> httpx.Response:
        """
        Send with retries, replaying once after a successful session refresh.

        Returns an ok response; for ``stream=True`` its body is still unread.
        """
        client = self.context.client

        async def send() -> httpx.Response:
            request = client.build_request("POST", endpoint, json=payload)
            return await client.send(request, stream=stream)

        refresh_attempted = False
        while True:
            response = await request_with_retry(
                send,
                self.context.retry_policy,
                sleep=self._sleep,
                on_attempt=metrics.record_attempt,
            )
            if response.is_success:
                return response

            await response.aclose()
            if response.status_code == 401:
                if refresh_attempted:
                    raise AuthError("Still unauthorized after session refresh", status_code=401)
                refresh_attempted = True
                metrics.auth_refreshes += 1
                await self.auth.handle_unauthorized()
                continue

            logger.warning(f"{endpoint} failed with HTTP {response.status_code}")
            if response.status_code in self.context.retry_policy.retryable_statuses:
                raise RateLimitError(
                    f"Retries exhausted, last status {response.status_code}",
                    status_code=response.status_code,
                )
            raise error_for_status(response.status_code)

    @staticmethod
    async def _read_stream(response: httpx.Response, decoder: SSEDecoder) -> StreamState:
        """Fold response bytes through the parser until a terminal event."""
        try:
            async for data in response.aiter_bytes():
                if decoder.feed(data).is_done:
                    return decoder.state
            return decoder.close()
        finally:
            await response.aclose()
