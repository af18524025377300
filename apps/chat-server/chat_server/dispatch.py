"""Dispatch layer: send and retry, each scheduling one background stream run."""

from __future__ import annotations

import asyncio

import structlog

from chat_server.errors import InvalidOperation, NotFound
from chat_server.ledger import ConversationLedger
from chat_server.models import DispatchAck, Message
from chat_server.orchestrator import StreamingOrchestrator

logger = structlog.get_logger()


def to_history(messages: list[Message]) -> list[dict]:
    return [{"role": m.role, "content": m.content} for m in messages]


class Dispatcher:
    """Sequences ledger writes and hands the provider call to the orchestrator.

    Both entry points return as soon as the run is scheduled; callers watch
    the assistant message row to see it progress.
    """

    def __init__(self, ledger: ConversationLedger, orchestrator: StreamingOrchestrator) -> None:
        self._ledger = ledger
        self._orchestrator = orchestrator
        self._tasks: set[asyncio.Task] = set()

    def _schedule(
        self,
        user_id: str,
        message_id: int,
        history: list[dict],
        model: str,
        provider: str,
        token: int,
    ) -> None:
        task = asyncio.create_task(
            self._orchestrator.run(user_id, message_id, history, model, provider, token=token),
            name=f"stream-message-{message_id}",
        )
        # Keep a strong reference until the run finishes
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def send_message(self, user_id: str | None, chat_id: int, content: str) -> DispatchAck:
        await self._ledger.add_message(user_id, chat_id, "user", content)
        chat = await self._ledger.get_chat(user_id, chat_id)
        history = await self._ledger.get_chat_messages(user_id, chat_id)

        assistant_id = await self._ledger.add_message(
            user_id,
            chat_id,
            "assistant",
            "",
            model=chat.model,
            provider=chat.provider,
            is_streaming=True,
            streaming_complete=False,
        )
        token = self._orchestrator.begin(assistant_id)
        self._schedule(user_id, assistant_id, to_history(history), chat.model, chat.provider, token)

        logger.info(
            "message_dispatched",
            chat_id=chat_id,
            message_id=assistant_id,
            provider=chat.provider,
            model=chat.model,
        )
        return DispatchAck(status="streaming_started", chat_id=chat_id, message_id=assistant_id)

    async def retry_message(self, user_id: str | None, message_id: int) -> DispatchAck:
        """Regenerate an assistant message from the turns that precede it.

        Messages after the target stay untouched; a run still writing to the
        target is superseded.
        """
        message = await self._ledger.get_message(user_id, message_id)
        if message.role != "assistant":
            raise InvalidOperation("Can only retry assistant messages")

        chat = await self._ledger.get_chat(user_id, message.chat_id)
        all_messages = await self._ledger.get_chat_messages(user_id, message.chat_id)
        index = next((i for i, m in enumerate(all_messages) if m.id == message_id), None)
        if index is None:
            raise NotFound()
        history = to_history(all_messages[:index])

        token = self._orchestrator.begin(message_id)
        try:
            claimed = await self._orchestrator.reset(user_id, message_id, token)
        except Exception:
            self._orchestrator.release(message_id, token)
            raise
        if claimed:
            self._schedule(user_id, message_id, history, chat.model, chat.provider, token)
        else:
            logger.info("message_retry_superseded", message_id=message_id)

        logger.info(
            "message_retry_dispatched",
            chat_id=message.chat_id,
            message_id=message_id,
            history_len=len(history),
        )
        return DispatchAck(status="retry_started", chat_id=message.chat_id, message_id=message_id)

    # ------------------------------------------------------------------
    # Background task bookkeeping
    # ------------------------------------------------------------------

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every scheduled run, including ones scheduled meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, grace_seconds: float = 10.0) -> None:
        """Let running streams finish for *grace_seconds*, then cancel the rest."""
        if not self._tasks:
            return
        done, still_running = await asyncio.wait(list(self._tasks), timeout=grace_seconds)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
        logger.info("dispatcher_stopped", finished=len(done), cancelled=len(still_running))
