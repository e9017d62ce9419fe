# src/llmrecall/engine.py
"""
The conversation engine.

:class:`RecallEngine` wires a persona, its Brain, the retrieval engine and
the context assembler to a generation backend. One engine serves one
conversation and holds no module-level state; pass it around by reference.

Generation is serialized by a single slot (``asyncio.Semaphore(1)``). The
plugin pre-pass, memory evaluation and retrieval run outside the slot, so a
plugin that issues its own query cannot deadlock against the turn that
called it. A turn first waits for the running generation to finish; a
caller that gives up waiting leaves the conversation untouched.
"""

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import (Any, AsyncIterator, Awaitable, Callable, List, Optional,
                    Sequence, Tuple)

from pydantic import ValidationError

from .config.models import LLMRecallSettings
from .context.builder import AssembledPrompt, ContextAssembler
from .context.tokens import TokenCounter
from .embedding.manager import EmbeddingManager
from .exceptions import (ConfigError, GenerationBusyError, ProviderError,
                         VectorStorageError)
from .memory.brain import Brain
from .memory.inserts import PromptInsertLedger
from .memory.retrieval import RetrievalEngine
from .models import ChatMessage, Role, utc_now
from .persona import Persona
from .plugins import ContextPlugin
from .providers.base import BaseProvider, GenerationChunk
from .storage.json_store import JsonMemoryStore

logger = logging.getLogger(__name__)

_END = object()


class EngineStatus(str, Enum):
    NOT_INIT = "not_init"
    READY = "ready"
    BUSY = "busy"


class GenerationStream:
    """
    A reply being generated.

    Iterate it for :class:`GenerationChunk` objects, or ``await
    stream.result()`` for the finished text. The backend is consumed by a
    task started on creation, so the reply completes whether or not anyone
    iterates. A stream can be iterated only once.
    """

    def __init__(self, source: AsyncIterator[GenerationChunk],
                 on_finish: Callable[["GenerationStream"], str],
                 prompt: Optional[AssembledPrompt] = None):
        self.prompt = prompt
        self.finish_reason: Optional[str] = None
        self.cancelled = False
        self._source = source
        self._on_finish = on_finish
        self._parts: List[str] = []
        self._text = ""
        self._error: Optional[BaseException] = None
        self._iterated = False
        self._queue: asyncio.Queue = asyncio.Queue()
        self._finished = asyncio.Event()
        self._task = asyncio.create_task(self._pump())
        self._task.add_done_callback(self._on_task_done)

    async def _pump(self) -> None:
        async for chunk in self._source:
            self._parts.append(chunk.token)
            if chunk.finish_reason:
                self.finish_reason = chunk.finish_reason
            await self._queue.put(chunk)

    def _on_task_done(self, task: "asyncio.Task[None]") -> None:
        if task.cancelled():
            self.cancelled = True
        elif task.exception() is not None:
            error = task.exception()
            if not isinstance(error, ProviderError):
                error = ProviderError("unknown", f"Generation failed: {error}")
            self._error = error
        try:
            self._text = self._on_finish(self)
        finally:
            self._queue.put_nowait(_END)
            self._finished.set()

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def done(self) -> bool:
        return self._finished.is_set()

    @property
    def raw_text(self) -> str:
        """Text received so far, before output plugins."""
        return "".join(self._parts)

    def cancel(self) -> bool:
        if self._task.done():
            return False
        return self._task.cancel()

    def __aiter__(self) -> AsyncIterator[GenerationChunk]:
        if self._iterated:
            raise RuntimeError("A GenerationStream can only be iterated once.")
        self._iterated = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[GenerationChunk]:
        while True:
            item = await self._queue.get()
            if item is _END:
                break
            yield item
        if self._error is not None:
            raise self._error

    async def result(self) -> str:
        """
        Wait for the end of generation and return the final reply.

        A cancelled stream returns what was produced before cancellation.

        Raises:
            ProviderError: If the backend failed.
        """
        await self._finished.wait()
        if self._error is not None:
            raise self._error
        return self._text


class RecallEngine:
    """
    Memory-augmented conversation with one persona.

    Args:
        provider: Generation backend.
        persona: Persona to talk to. Its chat log is the conversation history.
        user_name: Substituted for ``{{user}}``.
        settings: All tuning; defaults when omitted.
        embedder: Embedding backend. Defaults to an :class:`EmbeddingManager`
            built from ``settings.embedding`` for ``settings.retrieval.embedding_model``.
        tokenizer: Token counter. Defaults to tiktoken for ``settings.context.tokenizer_model``.
        plugins: Context plugins, run in order.
        clock: Current UTC time source, for tests.
    """

    def __init__(self, provider: BaseProvider, persona: Persona, user_name: str = "User",
                 settings: Optional[LLMRecallSettings] = None, embedder: Any = None,
                 tokenizer: Optional[TokenCounter] = None, plugins: Sequence[ContextPlugin] = (),
                 clock: Optional[Callable[[], datetime]] = None):
        self.settings = settings or LLMRecallSettings()
        self.provider = provider
        self.plugins: List[ContextPlugin] = list(plugins)
        self.clock = clock or utc_now
        if embedder is None and self.settings.retrieval.enabled:
            embedder = EmbeddingManager(self.settings.embedding, default_model=self.settings.retrieval.embedding_model)
        self.embedder = embedder
        self.tokenizer = tokenizer or TokenCounter(self.settings.context.tokenizer_model,
                                                   self.settings.context.tokens_per_message)
        self.retrieval = RetrievalEngine(embedder, self.settings.retrieval, persona)
        self.persona = persona
        persona.user_name = user_name
        self.brain = Brain(persona, self.retrieval, self.settings.brain, clock=self.clock)
        self.assembler = self._new_assembler()
        self.last_prompt: Optional[AssembledPrompt] = None
        self._slot = asyncio.Semaphore(1)
        self._initialized = False
        self._current: Optional[GenerationStream] = None

    def _new_assembler(self) -> ContextAssembler:
        return ContextAssembler(self.tokenizer, self.settings.context, self.brain,
                                self.persona.history, self.persona.system_prompt(), self.plugins)

    @property
    def status(self) -> EngineStatus:
        if self._slot.locked():
            return EngineStatus.BUSY
        return EngineStatus.READY if self._initialized else EngineStatus.NOT_INIT

    @property
    def user_name(self) -> str:
        return self.persona.user_name

    @property
    def ledger(self) -> PromptInsertLedger:
        return self.assembler.ledger

    async def initialize(self) -> None:
        """Build the vault for the persona and prime the eureka queue."""
        if self.retrieval.enabled:
            try:
                await self.retrieval.rebuild_index(self.persona)
            except VectorStorageError as e:
                self.retrieval.disable(f"index rebuild failed: {e}")
        self.brain.refresh()
        self._initialized = True
        logger.info(f"Engine ready for persona '{self.persona.name}' "
                    f"({len(self.retrieval.vault)} vectors, {len(self.brain.memories)} memories).")

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    async def _acquire(self, timeout: Optional[float]) -> None:
        if timeout is None:
            await self._slot.acquire()
            return
        try:
            await asyncio.wait_for(self._slot.acquire(), timeout)
        except asyncio.TimeoutError:
            raise GenerationBusyError(timeout)

    def _release(self) -> None:
        self._slot.release()

    async def _prepare_then_acquire(self, timeout: Optional[float],
                                    prepare: Callable[[], Awaitable[AssembledPrompt]]) -> AssembledPrompt:
        """
        Wait for the running generation, run ``prepare`` outside the slot, then take the slot.

        ``timeout`` bounds the wait for the running generation. When it runs
        out nothing has been prepared, so no state has changed.
        """
        await self._acquire(timeout)
        self._release()
        prompt = await prepare()
        await self._acquire(None)
        return prompt

    async def _plugin_prepass(self, text: str) -> Tuple[str, Optional[str]]:
        """Let plugins rewrite the input or add a system message after it."""
        prompt_text = text
        additions: List[str] = []
        query = text
        if not query:
            last_user = self.persona.history.last_message(Role.USER)
            query = last_user.content if last_user else ""
        if not query:
            return prompt_text, None
        for plugin in self.plugins:
            if not plugin.enabled:
                continue
            response = await plugin.replace_user_input(self.persona.replace_macros(query))
            if not response.handled or not response.response:
                continue
            if response.replace and text:
                prompt_text = response.response
            else:
                additions.append(response.response)
        plugin_message = "\n".join(additions).strip("\n")
        return prompt_text, plugin_message or None

    def _start_stream(self, prompt: AssembledPrompt, log_reply: bool) -> GenerationStream:
        self.last_prompt = prompt
        max_tokens = self.settings.context.max_reply_length
        try:
            source = self.provider.stream(prompt.messages, max_tokens)
        except Exception:
            self._release()
            raise

        def finish(stream: GenerationStream) -> str:
            try:
                return self._complete(stream, log_reply)
            finally:
                self._current = None
                self._release()

        self._current = GenerationStream(source, finish, prompt)
        return self._current

    def _complete(self, stream: GenerationStream, log_reply: bool) -> str:
        text = stream.raw_text
        if stream.prompt is not None and stream.prompt.response_start:
            text = stream.prompt.response_start + text
        text = text.strip()
        for plugin in self.plugins:
            if plugin.enabled and text:
                edited = plugin.replace_output(self.persona.replace_macros(text), self.persona.history)
                if edited is not None:
                    text = edited
        if stream.cancelled:
            logger.info(f"Generation cancelled after {len(text)} characters.")
        elif log_reply and text and stream.error is None:
            self.persona.history.log_message(Role.ASSISTANT, text, author=self.persona.name,
                                             timestamp=self.clock())
        return text

    async def send_message(self, text: str, timeout: Optional[float] = None, log_reply: bool = False,
                           media_tokens: int = 0) -> GenerationStream:
        """
        Send a user message and start generating the reply.

        Once the running generation, if any, has finished, the message is
        evaluated by the Brain and the prompt is assembled outside the slot.
        The slot is then taken, the message is logged and the backend starts
        streaming. Nothing changes when the wait times out.

        Args:
            text: The user's message.
            timeout: Seconds to wait for the generation slot; None waits forever.
            log_reply: Append the finished reply to the chat log.
            media_tokens: Tokens used by attached media.

        Raises:
            GenerationBusyError: If the slot did not free up within ``timeout``.
        """
        await self._ensure_initialized()
        prompt_text, plugin_message = await self._plugin_prepass(text)
        message = ChatMessage(role=Role.USER, content=text, author=self.user_name, timestamp=self.clock())

        async def prepare() -> AssembledPrompt:
            await self.brain.handle_message(message, self.persona.history)
            return await self.assembler.build(prompt_text, Role.USER, plugin_message, media_tokens)

        prompt = await self._prepare_then_acquire(timeout, prepare)
        self.persona.history.current_session.messages.append(message)
        return self._start_stream(prompt, log_reply)

    async def continue_reply(self, timeout: Optional[float] = None, log_reply: bool = False) -> GenerationStream:
        """Let the model speak again without a new user message."""
        return await self._generate_without_input(timeout, log_reply, drop_last_reply=False)

    async def reroll(self, timeout: Optional[float] = None, log_reply: bool = False) -> GenerationStream:
        """Drop the last reply, if the session ends with one, and generate a new one."""
        return await self._generate_without_input(timeout, log_reply, drop_last_reply=True)

    async def _generate_without_input(self, timeout: Optional[float], log_reply: bool,
                                      drop_last_reply: bool) -> GenerationStream:
        await self._ensure_initialized()
        _, plugin_message = await self._plugin_prepass("")

        async def prepare() -> AssembledPrompt:
            if drop_last_reply:
                last = self.persona.history.last_message_in_session()
                if last is not None and last.role == Role.ASSISTANT:
                    self.persona.history.remove_last_message()
            return await self.assembler.build("", Role.ASSISTANT, plugin_message)

        prompt = await self._prepare_then_acquire(timeout, prepare)
        return self._start_stream(prompt, log_reply)

    async def quick_system_query(self, text: str, timeout: Optional[float] = None,
                                 max_tokens: Optional[int] = None) -> str:
        """
        Ask the model something as the system, with the full conversation context.

        Nothing is logged.
        """
        await self._ensure_initialized()
        prompt = await self._prepare_then_acquire(timeout, lambda: self.assembler.build(text, Role.SYSTEM))
        try:
            self.last_prompt = prompt
            reply = await self.provider.generate(prompt.messages, max_tokens or self.settings.context.max_reply_length)
        finally:
            self._release()
        return reply.strip()

    async def simple_query(self, prompt: str, system: Optional[str] = None, timeout: Optional[float] = None,
                           max_tokens: Optional[int] = None) -> str:
        """Send ``prompt`` to the backend as is, without memories or history."""
        messages = [{"role": Role.SYSTEM.value, "content": system}] if system else []
        messages.append({"role": Role.USER.value, "content": prompt})
        await self._acquire(timeout)
        try:
            reply = await self.provider.generate(messages, max_tokens or self.settings.context.max_reply_length)
        finally:
            self._release()
        return reply.strip()

    def cancel(self) -> bool:
        """
        Stop the running generation. The slot is released and the status returns to ready.

        Returns:
            True if a generation was cancelled.
        """
        current = self._current
        if current is None:
            return False
        cancelled = current.cancel()
        if cancelled:
            logger.info("Generation cancel requested.")
        return cancelled

    def invalidate(self) -> None:
        self.assembler.invalidate()
        self.last_prompt = None

    async def start_new_session(self, name: str = "Current session") -> None:
        """Close the current session and open a new one."""
        self.persona.history.start_new_session(name)
        self.brain.on_new_session()
        self.invalidate()

    async def change_persona(self, persona: Persona, timeout: Optional[float] = None) -> None:
        """
        Switch to another persona: fresh ledger, rebuilt index, new Brain session.

        Raises:
            GenerationBusyError: If a generation is running past ``timeout``.
        """
        await self._acquire(timeout)
        try:
            self.invalidate()
            persona.user_name = self.user_name
            self.persona = persona
            self.brain = Brain(persona, self.retrieval, self.settings.brain, clock=self.clock)
            self.retrieval.persona = persona
            self.retrieval.invalidate_index()
            if self.retrieval.enabled:
                try:
                    await self.retrieval.rebuild_index(persona)
                except VectorStorageError as e:
                    self.retrieval.disable(f"index rebuild failed: {e}")
            self.brain.on_new_session()
            self.assembler = self._new_assembler()
            self._initialized = True
            logger.info(f"Switched to persona '{persona.name}'.")
        finally:
            self._release()

    def update_settings(self, **changes: Any) -> LLMRecallSettings:
        """
        Apply settings changes and invalidate the prompt cache.

        Keyword arguments are settings sections holding the fields to change,
        e.g. ``update_settings(context={"max_reply_length": 256})``.

        Raises:
            ConfigError: If the result does not validate.
        """
        data = self.settings.model_dump(mode="json")
        for section, values in changes.items():
            current = data.get(section)
            if isinstance(current, dict) and isinstance(values, dict):
                data[section] = {**current, **values}
            else:
                data[section] = values
        try:
            settings = LLMRecallSettings.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid settings update: {e}")
        self._apply_settings(settings)
        logger.debug(f"Settings updated: {sorted(changes)}")
        return settings

    def _apply_settings(self, settings: LLMRecallSettings) -> None:
        self.settings = settings
        self.retrieval.settings = settings.retrieval
        if settings.retrieval.enabled and self.embedder is not None:
            if not self.retrieval.enabled and self.retrieval.last_error is None:
                self.retrieval.enable()
        else:
            self.retrieval.enabled = False
        self.brain.settings = settings.brain
        self.tokenizer.tokens_per_message = settings.context.tokens_per_message
        self.assembler.settings = settings.context
        self.assembler.system_prompt = self.persona.system_prompt()
        self.invalidate()

    async def regen_embeddings(self) -> int:
        return await self.brain.regen_embeddings()

    async def save(self, store: JsonMemoryStore) -> None:
        """Persist the brain, ledger, settings, chat log and vault vectors."""
        await store.save_brain(self.brain.export_state())
        await store.save_inserts(self.ledger.to_records())
        await store.save_settings(self.settings)
        await store.save_chatlog(self.persona.history)
        vault = self.retrieval.vault
        await store.save_vectors([m.id for m in vault.memories()], vault.export_vectors())
        logger.info(f"State for persona '{self.persona.name}' saved to {store.path}")

    async def load(self, store: JsonMemoryStore) -> None:
        """
        Restore what :meth:`save` wrote. Missing or damaged parts keep their defaults.

        Stored settings are applied first, as :meth:`update_settings` would,
        which also clears the prompt inserts staged so far.

        The vault is restored from the vector export when every id still
        resolves to a memory; otherwise it is rebuilt on first use.
        """
        settings = await store.load_settings()
        if settings is not None:
            self._apply_settings(settings)
        chatlog = await store.load_chatlog()
        if chatlog is not None:
            self.persona.history = chatlog
        state = await store.load_brain()
        if state is not None:
            self.brain.load_state(state)
        self.assembler = self._new_assembler()
        records = await store.load_inserts()
        try:
            self.assembler.ledger = PromptInsertLedger.from_records(records, on_new=self.brain.touch_by_id)
        except ValidationError as e:
            logger.warning(f"Ignoring stored prompt inserts: {e}")

        self.retrieval.invalidate_index()
        exported = await store.load_vectors()
        if exported is not None and exported["ids"]:
            memories = [self.brain.get_memory_by_id(i) for i in exported["ids"]]
            if all(m is not None for m in memories):
                try:
                    self.retrieval.vault.import_vectors(exported["vectors"], memories)
                except VectorStorageError as e:
                    logger.warning(f"Stored vectors rejected, index will be rebuilt: {e}")
                    self.retrieval.invalidate_index()
            else:
                logger.warning("Stored vectors reference unknown memories; index will be rebuilt.")
        self.brain.refresh()
        self._initialized = True

    async def close(self) -> None:
        self.cancel()
        await self.provider.close()
        if self.embedder is not None and hasattr(self.embedder, "close"):
            await self.embedder.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
