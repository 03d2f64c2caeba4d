"""Debounced auto-save with bounded retry for assessment forms."""

import asyncio
import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from app.core.config import Settings, settings
from app.core.exceptions import ErrorCode, translate_db_error
from app.core.results import ActionResult
from app.models.base import utcnow
from app.models.user import User

logger = logging.getLogger(__name__)

SaveFn = Callable[[Dict[str, Any], Optional[int]], Awaitable[ActionResult]]


class SaveState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    SAVING = "saving"
    RETRYING = "retrying"
    SAVED = "saved"
    FAILED = "failed"
    CONFLICT = "conflict"


def merge_answers(target: Mapping[str, Any], partial: Mapping[str, Any], depth: int = 1) -> Dict[str, Any]:
    """Merge ``partial`` into a copy of ``target``; nested maps merge up to ``depth`` levels."""
    merged = dict(target)
    for key, value in partial.items():
        current = merged.get(key)
        if depth > 1 and isinstance(value, Mapping) and isinstance(current, Mapping):
            merged[key] = merge_answers(current, value, depth - 1)
        else:
            merged[key] = value
    return merged


class AutoSaver:
    """
    Buffers edits for one form and persists them through ``save_fn``.

    ``save_fn(payload, version)`` must be an optimistic-locked update returning an
    ``ActionResult`` whose data carries the new ``version``. Edits are flushed
    after ``debounce_ms`` of quiet. Transient failures are retried after
    ``base_delay_ms * 2**attempt`` up to ``max_retries`` times; a concurrent
    modification moves the saver to ``conflict`` and nothing is sent until
    ``rebase()`` is called with freshly loaded data. A newer edit cancels a
    scheduled retry and restarts the debounce window. An in-flight save is
    never cancelled.
    """

    def __init__(
        self,
        save_fn: SaveFn,
        *,
        debounce_ms: int,
        max_retries: int = 2,
        base_delay_ms: int = 1000,
        version: Optional[int] = None,
        document: Optional[Mapping[str, Any]] = None,
        send_full_document: bool = False,
        merge_depth: int = 1,
        name: str = "form",
    ):
        self._save_fn = save_fn
        self.debounce_ms = debounce_ms
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.version = version
        self.name = name
        self.send_full_document = send_full_document
        self.merge_depth = merge_depth

        self.state = SaveState.IDLE
        self.last_saved_at: Optional[datetime] = None
        self.last_result: Optional[ActionResult] = None
        self.attempts = 0

        self._document: Dict[str, Any] = dict(document or {})
        self._buffer: Dict[str, Any] = {}
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._save_task: Optional[asyncio.Task] = None

    @property
    def document(self) -> Dict[str, Any]:
        """The full form state as the user currently sees it."""
        return dict(self._document)

    @property
    def has_unsaved_changes(self) -> bool:
        return bool(self._buffer) or self._saving

    @property
    def _saving(self) -> bool:
        return self._save_task is not None and not self._save_task.done()

    def edit(self, partial: Mapping[str, Any]) -> None:
        """Buffer an edit and (re)start the debounce window."""
        self._document = merge_answers(self._document, partial, self.merge_depth)
        self._buffer = merge_answers(self._buffer, partial, self.merge_depth)
        self._generation += 1

        if self.state == SaveState.CONFLICT:
            return
        if self._saving:
            # The running cycle picks the buffer up once the save returns
            return
        self._cancel_cycle()
        self._set_state(SaveState.PENDING)
        self._task = asyncio.create_task(self._run())

    async def flush(self) -> bool:
        """
        Persist buffered edits immediately, skipping the debounce window.

        Used before an explicit complete/submit. Returns True when nothing is
        left unsaved.
        """
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        if self._saving:
            await asyncio.gather(self._save_task, return_exceptions=True)

        if self._buffer and self.state != SaveState.CONFLICT:
            await self._save_with_retries()
        return not self._buffer and self.state not in (SaveState.CONFLICT, SaveState.FAILED)

    def rebase(self, version: int, document: Optional[Mapping[str, Any]] = None) -> None:
        """
        Adopt a freshly loaded version after a conflict.

        Buffered edits are kept and re-applied on top of ``document``; the
        caller decides whether to flush them again.
        """
        self._cancel_cycle()
        self.version = version
        if document is not None:
            self._document = merge_answers(document, self._buffer, self.merge_depth)
        self._set_state(SaveState.PENDING if self._buffer else SaveState.IDLE)
        if self._buffer:
            self._task = asyncio.create_task(self._run())

    async def close(self) -> None:
        """Stop scheduled work. Unsaved edits stay in the buffer."""
        self._cancel_cycle()
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
        if self._saving:
            await asyncio.gather(self._save_task, return_exceptions=True)

    # ============================================================================
    # SAVE CYCLE
    # ============================================================================

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.debounce_ms / 1000)
            saved = await self._save_with_retries()
            if saved is False or not self._buffer or self.state == SaveState.CONFLICT:
                return
            self._set_state(SaveState.PENDING)

    async def _save_with_retries(self) -> Optional[bool]:
        """
        True when the batch was stored, False on a terminal failure and None
        when a newer edit arrived while a failing save was in flight.
        """
        attempt = 0
        while True:
            generation = self._generation
            self._save_task = asyncio.ensure_future(self._save_once())
            result = await asyncio.shield(self._save_task)
            if result.success:
                return True
            if result.code == ErrorCode.CONCURRENT_MODIFICATION:
                return False
            if generation != self._generation:
                logger.info(f"[AUTO_SAVE] {self.name}: newer edit supersedes retry")
                return None
            if not result.is_retryable or attempt >= self.max_retries:
                logger.warning(
                    f"[AUTO_SAVE] {self.name}: giving up after {attempt + 1} attempt(s) "
                    f"({result.code.value if result.code else 'unknown'})"
                )
                return False

            delay_ms = self.base_delay_ms * (2 ** attempt)
            self._set_state(SaveState.RETRYING)
            logger.info(f"[AUTO_SAVE] {self.name}: retry {attempt + 1} in {delay_ms}ms")
            await asyncio.sleep(delay_ms / 1000)
            attempt += 1

    async def _save_once(self) -> ActionResult:
        batch = self._buffer
        self._buffer = {}
        payload = dict(self._document) if self.send_full_document else batch
        self.attempts += 1
        self._set_state(SaveState.SAVING)

        try:
            result = await self._save_fn(payload, self.version)
        except Exception as exc:
            result = ActionResult.fail(translate_db_error(exc))
        self.last_result = result

        if result.success:
            new_version = getattr(result.data, "version", None)
            if new_version is not None:
                self.version = new_version
            self.last_saved_at = utcnow()
            self._set_state(SaveState.PENDING if self._buffer else SaveState.SAVED)
            return result

        # Edits made while the save was in flight win over the failed batch
        self._buffer = merge_answers(batch, self._buffer, self.merge_depth)
        if result.code == ErrorCode.CONCURRENT_MODIFICATION:
            logger.info(f"[AUTO_SAVE] {self.name}: conflict at v{self.version}, reload required")
            self._set_state(SaveState.CONFLICT)
        else:
            self._set_state(SaveState.FAILED)
        return result

    def _cancel_cycle(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def _set_state(self, state: SaveState) -> None:
        if state != self.state:
            logger.debug(f"[AUTO_SAVE] {self.name}: {self.state.value} -> {state.value}")
            self.state = state


# ============================================================================
# FORM FACTORIES
# ============================================================================


def eligibility_auto_saver(
    service,
    actor: User,
    assessment_id: uuid.UUID,
    version: int,
    answers: Optional[Mapping[str, Any]] = None,
    config: Settings = settings,
) -> AutoSaver:
    """Eligibility answers are stored as a whole map, so every save sends the full form."""

    async def save(payload: Dict[str, Any], expected_version: Optional[int]) -> ActionResult:
        return await service.update_eligibility_answers(
            actor, assessment_id, payload, expected_version
        )

    return AutoSaver(
        save,
        debounce_ms=config.ELIGIBILITY_DEBOUNCE_MS,
        max_retries=config.AUTO_SAVE_MAX_RETRY_ATTEMPTS,
        base_delay_ms=config.AUTO_SAVE_RETRY_BASE_DELAY_MS,
        version=version,
        document=answers,
        send_full_document=True,
        name=f"eligibility:{assessment_id}",
    )


def assessment_auto_saver(
    service,
    actor: User,
    assessment_id: uuid.UUID,
    version: int,
    config: Settings = settings,
) -> AutoSaver:
    """Questionnaire edits are ``{category: {key: answer}}`` partials merged server-side."""

    async def save(payload: Dict[str, Any], expected_version: Optional[int]) -> ActionResult:
        return await service.update_all_assessment_answers(
            actor, assessment_id, payload, expected_version
        )

    return AutoSaver(
        save,
        debounce_ms=config.ASSESSMENT_DEBOUNCE_MS,
        max_retries=config.AUTO_SAVE_MAX_RETRY_ATTEMPTS,
        base_delay_ms=config.AUTO_SAVE_RETRY_BASE_DELAY_MS,
        version=version,
        merge_depth=2,
        name=f"assessment:{assessment_id}",
    )
