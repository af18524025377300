"""Streaming orchestrator: drives one provider call into one assistant message.

Life of an assistant message::

    Pending ──► Streaming ──► Complete
       └───────────┴──────────► Failed

Every increment rewrites the *whole* cumulative text, so each persisted
snapshot is a prefix of the next one and can be displayed on its own.
The last write always flips ``is_streaming`` off and ``streaming_complete``
on, even when the text did not change.  Any error turns the message into a
fixed apology; a message is never left streaming.

Only one run may write to a message at a time.  ``begin`` hands out a
process-wide unique token and records it as the message's current run; a
run whose token has been replaced stops before its next write.  Token
checks and writes are serialized per message, so a stale write already in
flight lands before the newer run writes anything.
"""

from __future__ import annotations

import asyncio
import enum
import itertools
from contextlib import aclosing
from typing import Callable

import structlog

from chat_server.errors import NotFound
from chat_server.ledger import ConversationLedger
from chat_server.models import Message
from chat_server.providers import NO_RESPONSE, ChatProvider

logger = structlog.get_logger()

APOLOGY = "Sorry, I encountered an error while generating a response. Please try again."


class RunState(str, enum.Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETE = "complete"
    FAILED = "failed"


def run_state(message: Message) -> RunState:
    """Derive the orchestrator state a reader should display for *message*."""
    if message.streaming_complete:
        return RunState.FAILED if message.content == APOLOGY else RunState.COMPLETE
    if message.is_streaming:
        return RunState.STREAMING if message.content else RunState.PENDING
    return RunState.COMPLETE


class StreamingOrchestrator:
    """Runs provider streams and persists their cumulative text."""

    def __init__(
        self,
        ledger: ConversationLedger,
        resolve_provider: Callable[[str], ChatProvider],
    ) -> None:
        self._ledger = ledger
        self._resolve_provider = resolve_provider
        self._tokens = itertools.count(1)
        self._current: dict[int, int] = {}
        self._locks: dict[int, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Run tokens
    # ------------------------------------------------------------------

    def begin(self, message_id: int) -> int:
        """Claim *message_id* for a new run, superseding any live one."""
        token = next(self._tokens)
        self._current[message_id] = token
        return token

    def is_current(self, message_id: int, token: int) -> bool:
        return self._current.get(message_id) == token

    def active_runs(self) -> int:
        return len(self._current)

    def release(self, message_id: int, token: int) -> None:
        if self._current.get(message_id) == token:
            del self._current[message_id]
            lock = self._locks.get(message_id)
            if lock is not None and not lock.locked():
                del self._locks[message_id]

    async def _write(
        self,
        user_id: str,
        message_id: int,
        token: int,
        content: str,
        *,
        is_streaming: bool,
        streaming_complete: bool,
    ) -> bool:
        # The token is checked under the message lock so a write that passed
        # the check always lands before any write of a newer run.
        lock = self._locks.setdefault(message_id, asyncio.Lock())
        async with lock:
            if not self.is_current(message_id, token):
                return False
            await self._ledger.update_message_content(
                user_id,
                message_id,
                content,
                is_streaming=is_streaming,
                streaming_complete=streaming_complete,
            )
        return True

    async def reset(self, user_id: str, message_id: int, token: int) -> bool:
        """Blank *message_id* back to pending for the run holding *token*.

        Returns False when a newer run has already claimed the message.
        """
        return await self._write(
            user_id, message_id, token, "",
            is_streaming=True, streaming_complete=False,
        )

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def run(
        self,
        user_id: str,
        message_id: int,
        history: list[dict],
        model: str,
        provider_name: str,
        token: int | None = None,
    ) -> None:
        """Stream a completion for *history* into message *message_id*.

        Never raises: failures end in the apology state.  Pass the *token*
        returned by ``begin`` when the claim was taken before scheduling.
        """
        if token is None:
            token = self.begin(message_id)
        log = logger.bind(message_id=message_id, provider=provider_name, model=model, run=token)
        log.info("stream_started", history_len=len(history))

        cumulative = ""
        increments = 0
        try:
            provider = self._resolve_provider(provider_name)
            async with aclosing(provider.stream(history, model)) as stream:
                async for increment in stream:
                    if not increment:
                        continue
                    cumulative += increment
                    increments += 1
                    written = await self._write(
                        user_id, message_id, token, cumulative,
                        is_streaming=True, streaming_complete=False,
                    )
                    if not written:
                        log.info("stream_superseded", increments=increments)
                        return

            final = cumulative or NO_RESPONSE
            if await self._write(
                user_id, message_id, token, final,
                is_streaming=False, streaming_complete=True,
            ):
                log.info("stream_completed", increments=increments, chars=len(final))
            else:
                log.info("stream_superseded", increments=increments)

        except NotFound:
            log.info("stream_target_gone", increments=increments)

        except Exception:
            log.exception("stream_failed", increments=increments)
            try:
                await self._write(
                    user_id, message_id, token, APOLOGY,
                    is_streaming=False, streaming_complete=True,
                )
            except Exception:
                log.exception("stream_failure_write_failed")

        except asyncio.CancelledError:
            # Only happens at shutdown; do not leave the row streaming
            log.warning("stream_cancelled", increments=increments)
            try:
                await self._write(
                    user_id, message_id, token, APOLOGY,
                    is_streaming=False, streaming_complete=True,
                )
            except Exception:
                log.exception("stream_failure_write_failed")
            raise

        finally:
            self.release(message_id, token)

    async def generate_response(self, history: list[dict], model: str, provider_name: str) -> str:
        """One-shot completion; returns the apology text instead of raising."""
        try:
            provider = self._resolve_provider(provider_name)
            return await provider.complete(history, model)
        except Exception:
            logger.exception("generate_response_failed", provider=provider_name, model=model)
            return APOLOGY
