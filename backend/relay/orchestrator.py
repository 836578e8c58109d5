"""
Relay orchestrator: runs one streaming chat turn.

A turn has two halves, split where the HTTP response gets committed:

1. begin_turn(): authorize the session, validate input, persist the user
   message, assemble the bounded context. Anything that fails here is still
   an ordinary HTTP error (404 / 403 / 422).

2. stream_turn(): an async generator of StreamEvents: start, one delta per
   provider chunk, then exactly one terminal done or error. The assistant
   message is persisted only if the provider stream completes; a broken
   stream leaves the turn as "user spoke, assistant failed".

If the consumer stops iterating (client disconnected), the generator is
closed, the provider stream is closed with it, and nothing is persisted for
the assistant side.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncGenerator, Awaitable, Callable, Dict, List, Optional, Set

from config import Settings, get_settings
from conversation_store import ConversationStore
from llm.base import LLMProvider
from models.message import Message, Role, TokenUsage
from models.session import Session
from relay.events import (
    PERSISTENCE_ERROR,
    STREAM_ERROR,
    STREAM_TIMEOUT,
    DeltaEvent,
    DoneEvent,
    ErrorEvent,
    StartEvent,
    StreamEvent,
)
from utils.errors import ProviderError, TransportAbort
from utils.validators import validate_message_content, validate_model

logger = logging.getLogger(__name__)

DisconnectCheck = Callable[[], Awaitable[bool]]

# Keep track of background tasks to prevent garbage collection
_background_tasks: Set[asyncio.Task] = set()


def _spawn(coro: Awaitable) -> asyncio.Task:
    task = asyncio.ensure_future(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def wait_for_background_tasks() -> None:
    """Wait for pending title updates (shutdown and tests)."""
    while True:
        pending = [t for t in _background_tasks if not t.done()]
        if not pending:
            return
        await asyncio.gather(*pending, return_exceptions=True)


@dataclass
class Turn:
    """One user message and the context it will be answered with."""
    session: Session
    owner_id: str
    user_message: Message
    model: str
    context: List[Dict[str, str]]
    # First turn of a session still carrying the placeholder title
    derive_title: bool


class RelayOrchestrator:
    """Coordinates streaming turns against one store and one provider.

    Cheap to build: routers make one per request around a fresh provider.
    """

    def __init__(
        self,
        store: ConversationStore,
        provider: LLMProvider,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.provider = provider
        self.settings = settings or get_settings()

    # ============================================================
    # Public entry points
    # ============================================================

    async def handle_turn(
        self,
        session_id: str,
        owner_id: str,
        content: str,
        model: Optional[str] = None,
        is_disconnected: Optional[DisconnectCheck] = None,
    ) -> AsyncGenerator[StreamEvent, None]:
        """Validate and persist the user side, then return the event stream."""
        turn = await self.begin_turn(session_id, owner_id, content, model)
        return self.stream_turn(turn, is_disconnected=is_disconnected)

    async def begin_turn(
        self,
        session_id: str,
        owner_id: str,
        content: str,
        model: Optional[str] = None,
    ) -> Turn:
        """Steps that can still fail as a normal HTTP error.

        Raises:
            ValidationFailed: Empty/oversized content or unknown model.
            NotFoundError: No such session.
            ForbiddenError: Session owned by someone else.
        """
        settings = self.settings
        validate_message_content(content, settings.max_message_length)
        model = validate_model(model or settings.default_model, settings.allowed_models)

        session = await self.store.get_session(session_id, owner_id)
        derive_title = (
            session.message_count == 0
            and session.title == self.store.default_title
        )

        # Committed before the first frame goes out
        user_message = await self.store.append_message(session_id, Role.USER, content)

        context = await self.build_context(session_id)
        logger.info(
            f"Turn started: session={session_id} user_message={user_message.id} "
            f"model={model} context_messages={len(context) - 1}"
        )
        return Turn(
            session=session,
            owner_id=owner_id,
            user_message=user_message,
            model=model,
            context=context,
            derive_title=derive_title,
        )

    async def build_context(self, session_id: str) -> List[Dict[str, str]]:
        """System preamble followed by the most recent messages, oldest first.

        Older history beyond the window is dropped, not summarized.
        """
        history = await self.store.list_recent_messages(session_id, self.settings.context_window)
        context = [{"role": Role.SYSTEM.value, "content": self.settings.system_prompt}]
        context.extend(
            {"role": m.role.value, "content": m.content}
            for m in history
            if m.role != Role.SYSTEM
        )
        return context

    async def stream_turn(
        self,
        turn: Turn,
        is_disconnected: Optional[DisconnectCheck] = None,
    ) -> AsyncGenerator[StreamEvent, None]:
        """Relay the provider stream for a prepared turn."""
        session_id = turn.session.id
        yield StartEvent(message_id=turn.user_message.id, session_id=session_id)

        buffer: List[str] = []
        usage: Optional[TokenUsage] = None
        index = 0
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.stream_timeout_seconds
        stream = self.provider.stream(turn.context, turn.model)
        failure: Optional[ErrorEvent] = None
        aborted = False

        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise asyncio.TimeoutError()
                try:
                    chunk = await asyncio.wait_for(stream.__anext__(), timeout=remaining)
                except StopAsyncIteration:
                    raise ProviderError("Provider stream ended without a usage report")

                if chunk.is_done:
                    usage = chunk.usage or TokenUsage()
                    break
                if not chunk.content:
                    continue
                if is_disconnected is not None and await is_disconnected():
                    raise TransportAbort()

                buffer.append(chunk.content)
                yield DeltaEvent(content=chunk.content, index=index)
                index += 1
        except asyncio.TimeoutError:
            logger.error(
                f"Stream timed out after {self.settings.stream_timeout_seconds}s "
                f"for session {session_id} ({index} chunks relayed)"
            )
            failure = ErrorEvent(code=STREAM_TIMEOUT, message="The response took too long")
        except ProviderError as e:
            logger.error(f"Stream error for session {session_id} after {index} chunks: {e}")
            failure = ErrorEvent(code=STREAM_ERROR, message="Failed to generate response")
        except TransportAbort:
            logger.info(
                f"Client disconnected mid-stream for session {session_id} "
                f"after {index} chunks; provider stream abandoned"
            )
            aborted = True
        except (GeneratorExit, asyncio.CancelledError):
            logger.info(
                f"Stream closed by transport for session {session_id} "
                f"after {index} chunks; provider stream abandoned"
            )
            raise
        except Exception as e:
            logger.error(f"Unexpected stream failure for session {session_id}: {e}", exc_info=True)
            failure = ErrorEvent(code=STREAM_ERROR, message="Failed to generate response")
        finally:
            await stream.aclose()

        if aborted:
            return
        if failure is not None:
            yield failure
            return

        full_response = "".join(buffer)
        try:
            assistant_message = await self.store.append_message(
                session_id,
                Role.ASSISTANT,
                full_response,
                model=turn.model,
                usage=usage,
            )
        except Exception as e:
            logger.error(f"Post-stream save failed for session {session_id}: {e}", exc_info=True)
            yield ErrorEvent(code=PERSISTENCE_ERROR, message="Failed to save response")
            return

        logger.info(
            f"Stream finished: session={session_id} chunks={index} chars={len(full_response)} "
            f"prompt_tokens={usage.prompt_tokens} completion_tokens={usage.completion_tokens}"
        )

        if turn.derive_title:
            _spawn(self._update_title(session_id, turn.user_message.content))

        yield DoneEvent(message_id=assistant_message.id, usage=usage)

    # ============================================================
    # Background work
    # ============================================================

    async def _update_title(self, session_id: str, first_message: str) -> None:
        """Derive a title from the first message and apply it if still default."""
        try:
            title = await self.provider.generate_title(
                first_message,
                model=self.settings.title_model,
                max_tokens=self.settings.title_max_tokens,
                fallback=self.store.default_title,
            )
            # Fallback means derivation failed; leave the placeholder alone
            if title == self.store.default_title:
                return
            if await self.store.rename_session_if_default(session_id, title):
                logger.info(f"Session {session_id} titled '{title}'")
        except Exception as e:
            logger.warning(f"Title update failed for session {session_id}: {e}")
