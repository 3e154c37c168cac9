"""Chat session state: in-flight request, undo/redo and error display."""

import asyncio
from typing import Dict, List, Optional

from regis_client.chat.backup_store import BackupStore
from regis_client.chat.models import ConversationSnapshot, ExecuteResult, Message, QueuedRequest, Role
from regis_client.chat.offline_queue import OfflineQueue
from regis_client.chat.orchestrator import RequestOrchestrator
from regis_client.clients.cancellation import CancelToken
from regis_client.clients.connectivity import ConnectivityMonitor
from regis_client.config.settings import settings
from regis_client.exceptions import ErrorKind, RequestError
from regis_client.utils.logger import logger
from regis_client.utils.structured_logging import log_error

ERROR_MESSAGES: Dict[str, Dict[ErrorKind, str]] = {
    "en": {
        ErrorKind.AUTH_ERROR: "Your session has expired. Please sign in again.",
        ErrorKind.TIMEOUT: "The request took too long. Please try again.",
        ErrorKind.RATE_LIMIT: "Too many requests. Please wait a moment and try again.",
        ErrorKind.UNKNOWN: "Something went wrong. Please try again.",
    },
    "pl": {
        ErrorKind.AUTH_ERROR: "Sesja wygasła. Zaloguj się ponownie.",
        ErrorKind.TIMEOUT: "Przekroczono czas oczekiwania. Spróbuj ponownie.",
        ErrorKind.RATE_LIMIT: "Zbyt wiele zapytań. Odczekaj chwilę i spróbuj ponownie.",
        ErrorKind.UNKNOWN: "Coś poszło nie tak. Spróbuj ponownie.",
    },
}


def error_message_for(kind: ErrorKind, language: str = "en") -> str:
    """Localized user-facing message for a failure kind."""
    messages = ERROR_MESSAGES.get(language, ERROR_MESSAGES["en"])
    return messages.get(kind, messages[ErrorKind.UNKNOWN])


class ChatSession:
    """
    Owns one conversation and its single in-flight request.

    A new send cancels the previous one; each send is tagged with a
    generation number and results, chunks or errors from an older
    generation are dropped. Undo/redo stacks hold whole-conversation
    snapshots taken before each send or clear.
    """

    def __init__(
        self,
        orchestrator: RequestOrchestrator,
        backup_store: Optional[BackupStore] = None,
        offline_queue: Optional[OfflineQueue] = None,
        connectivity: Optional[ConnectivityMonitor] = None,
        streaming: bool = True,
        language: Optional[str] = None,
        max_history: Optional[int] = None,
    ):
        """
        Initialize the chat session.

        Args:
            orchestrator: Sends prompts to the backend
            backup_store: Optional store used by backup()/restore()
            offline_queue: Where prompts go while offline; its executor
                defaults to this session's replay_queued
            connectivity: Online flag (defaults to the queue's monitor)
            streaming: Use the SSE endpoint and show partial text
            language: Error message language (defaults to settings.LANGUAGE)
            max_history: Undo depth (defaults to settings.MAX_UNDO_HISTORY)
        """
        self.orchestrator = orchestrator
        self.backup_store = backup_store
        self.offline_queue = offline_queue
        if connectivity is None and offline_queue is not None:
            connectivity = offline_queue.connectivity
        self.connectivity = connectivity
        self.streaming = streaming
        self.language = language or settings.LANGUAGE
        self.max_history = settings.MAX_UNDO_HISTORY if max_history is None else max_history
        self.error: Optional[str] = None

        self._messages: List[Message] = []
        self._history: List[ConversationSnapshot] = []
        self._redo_stack: List[ConversationSnapshot] = []
        self._generation = 0
        self._cancel_token: Optional[CancelToken] = None
        self._pending_id: Optional[str] = None
        # Held around every orchestrator call, live sends and queue replays alike
        self._request_lock = asyncio.Lock()
        # Queued request id -> id of the user message it was deferred from
        self._deferred: Dict[str, str] = {}

        if offline_queue is not None and offline_queue.executor is None:
            offline_queue.executor = self.replay_queued

    @property
    def messages(self) -> ConversationSnapshot:
        return tuple(self._messages)

    @property
    def is_loading(self) -> bool:
        return self._cancel_token is not None

    @property
    def can_undo(self) -> bool:
        return bool(self._history)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo_stack)

    @property
    def is_empty(self) -> bool:
        return not self._messages

    async def send_message(self, prompt: str, model: Optional[str] = None) -> Optional[Message]:
        """
        Send a prompt, superseding any request still in flight.

        Args:
            prompt: The user's prompt
            model: Optional model override

        Returns:
            The assistant message, or None if the send failed, was
            cancelled, superseded or deferred to the offline queue
        """
        prompt = prompt.strip()
        if not prompt:
            return None

        self.cancel_request()
        self._push_history()
        self._redo_stack.clear()
        self.error = None
        user_message = Message(role=Role.USER, content=prompt)
        self._messages.append(user_message)

        if self._is_offline():
            self._defer(user_message, model)
            logger.info("Offline, prompt deferred to the offline queue")
            return None

        self._generation += 1
        generation = self._generation
        token = CancelToken()
        self._cancel_token = token

        if self.streaming:
            placeholder = Message(role=Role.ASSISTANT, content="", pending=True)
            self._messages.append(placeholder)
            self._pending_id = placeholder.id

        try:
            async with self._request_lock:
                if generation != self._generation:
                    logger.debug(f"Generation {generation} superseded before it was sent")
                    return None
                logger.debug(f"Sending prompt (generation {generation}, {len(prompt)} chars)")
                if self.streaming:
                    result = await self.orchestrator.execute_streaming(
                        prompt,
                        model,
                        on_chunk=lambda text: self._apply_chunk(generation, text),
                        cancel_token=token,
                    )
                else:
                    result = await self.orchestrator.execute(prompt, model, cancel_token=token)
        except RequestError as e:
            self._handle_failure(generation, e, user_message, model)
            return None

        if generation != self._generation:
            logger.debug(f"Discarding result of superseded generation {generation}")
            return None
        self._cancel_token = None
        return self._complete(result)

    async def replay_queued(self, request: QueuedRequest) -> Message:
        """
        Offline queue executor: send a deferred prompt and insert the reply.

        Waits for any live send to finish first. The reply goes right after
        the user message it answers, or at the end if that message is no
        longer in the conversation.

        Raises:
            RequestError: So the queue counts the failed attempt
        """
        async with self._request_lock:
            result = await self.orchestrator.execute(request.prompt, request.model)

        message = self._assistant_message(result)
        anchor = self._index_of(self._deferred.pop(request.id, None))
        if anchor is None:
            self._messages.append(message)
        else:
            self._messages.insert(anchor + 1, message)
        return message

    def cancel_request(self) -> None:
        """Cancel the in-flight request; its late result is discarded."""
        if self._cancel_token is None:
            return
        logger.info(f"Cancelling in-flight request (generation {self._generation})")
        self._cancel_token.cancel()
        self._cancel_token = None
        self._remove_pending()
        self._generation += 1

    def clear_chat(self) -> None:
        if not self._messages:
            return
        self.cancel_request()
        self._push_history()
        self._redo_stack.clear()
        self._messages = []
        self.error = None

    def undo(self) -> bool:
        """Restore the snapshot taken before the last send or clear."""
        if not self._history:
            return False
        self.cancel_request()
        self._redo_stack.append(tuple(self._messages))
        self._messages = list(self._history.pop())
        self.error = None
        return True

    def redo(self) -> bool:
        if not self._redo_stack:
            return False
        self.cancel_request()
        self._history.append(tuple(self._messages))
        self._messages = list(self._redo_stack.pop())
        self.error = None
        return True

    def clear_error(self) -> None:
        self.error = None

    async def restore(self) -> bool:
        """Load the latest backup into an empty session."""
        if self.backup_store is None or self._messages:
            return False
        stored = await self.backup_store.load_latest()
        if not stored:
            return False
        self._messages = list(stored)
        logger.info(f"Restored {len(stored)} messages from backup")
        return True

    async def backup(self) -> None:
        if self.backup_store is None:
            return
        await self.backup_store.save([m for m in self._messages if not m.pending])

    def _is_offline(self) -> bool:
        return (
            self.offline_queue is not None
            and self.connectivity is not None
            and not self.connectivity.is_online
        )

    def _push_history(self) -> None:
        self._history.append(tuple(self._messages))
        if len(self._history) > self.max_history:
            del self._history[0]

    def _apply_chunk(self, generation: int, text: str) -> None:
        if generation != self._generation or self._pending_id is None:
            return
        index = self._pending_index()
        if index is not None:
            pending = self._messages[index]
            self._messages[index] = pending.with_content(pending.content + text)

    def _complete(self, result: ExecuteResult) -> Message:
        message = self._assistant_message(result)
        index = self._pending_index()
        if index is not None:
            message = message.with_content(message.content, id=self._messages[index].id)
            self._messages[index] = message
        else:
            self._messages.append(message)
        self._pending_id = None
        return message

    def _handle_failure(
        self,
        generation: int,
        error: RequestError,
        user_message: Message,
        model: Optional[str],
    ) -> None:
        if generation != self._generation:
            logger.debug(f"Discarding {error.kind} from superseded generation {generation}")
            return
        self._cancel_token = None
        self._remove_pending()

        if error.kind == ErrorKind.CANCELLED:
            return

        if error.kind == ErrorKind.UNKNOWN and error.status_code is None and self._is_offline():
            self._defer(user_message, model)
            logger.info("Send failed while offline, prompt deferred to the offline queue")
            return

        log_error(
            error_type="request_error",
            error_message=str(error),
            context={"kind": error.kind.value, "generation": generation},
        )
        self.error = error_message_for(error.kind, self.language)

    def _defer(self, user_message: Message, model: Optional[str]) -> None:
        request_id = self.offline_queue.enqueue(user_message.content, model)
        self._deferred[request_id] = user_message.id

    def _remove_pending(self) -> None:
        index = self._pending_index()
        if index is not None:
            del self._messages[index]
        self._pending_id = None

    def _pending_index(self) -> Optional[int]:
        return self._index_of(self._pending_id)

    def _index_of(self, message_id: Optional[str]) -> Optional[int]:
        if message_id is None:
            return None
        for index, message in enumerate(self._messages):
            if message.id == message_id:
                return index
        return None

    @staticmethod
    def _assistant_message(result: ExecuteResult) -> Message:
        return Message(
            role=Role.ASSISTANT,
            content=result.text,
            sources=result.sources,
            model_used=result.model_used,
        )
