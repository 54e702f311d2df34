"""Action executor: runs suggested actions against the record store."""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Sequence

from config.settings import settings
from database.repositories.record_repo import (
    DEFAULT_READ_LIMIT,
    RecordNotFoundError,
    RecordRepository,
    RecordStoreError,
)
from models.action import ActionType, EntityKind, ExecutedOperation, SuggestedAction
from utils.validation import is_valid_uuid

logger = logging.getLogger(__name__)

UNKNOWN_ACTION = "Unknown action type"


class ActionError(Exception):
    """A single action could not be carried out."""


Handler = Callable[[SuggestedAction], Awaitable[ExecutedOperation]]


class ActionExecutor:
    """
    Executes actions one at a time, in the order given.

    Every action produces exactly one ExecutedOperation. A failing action
    (bad input, store error, timeout) is reported in its own result and
    never stops the rest of the batch.
    """

    def __init__(self, store: RecordRepository, timeout_s: Optional[float] = None):
        self.store = store
        self.timeout_s = timeout_s or settings.DB_TIMEOUT
        by_type: dict[ActionType, Handler] = {
            ActionType.CREATE: self._create,
            ActionType.READ: self._read,
            ActionType.UPDATE: self._update,
            ActionType.DELETE: self._delete,
        }
        self._handlers: dict[tuple[ActionType, EntityKind], Handler] = {
            (action_type, kind): handler
            for action_type, handler in by_type.items()
            for kind in EntityKind
        }

    async def execute(self, actions: Sequence[SuggestedAction]) -> list[ExecutedOperation]:
        results = []
        for action in actions:
            results.append(await self._execute_single(action))
        succeeded = sum(1 for r in results if r.success)
        logger.info(f"Executed {len(results)} action(s), {succeeded} succeeded")
        return results

    async def _execute_single(self, action: SuggestedAction) -> ExecutedOperation:
        start = time.time()
        handler = self._handlers.get((action.type, action.entity))
        if handler is None:
            logger.error(f"No handler for {_value(action.type)}/{_value(action.entity)}")
            return _failure(action, UNKNOWN_ACTION)

        try:
            result = await asyncio.wait_for(handler(action), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            logger.error(f"Action {action.id} ({action.type.value} {action.entity.value}) timed out")
            return _failure(action, f"Timed out after {self.timeout_s}s")
        except (ActionError, RecordStoreError) as e:
            logger.warning(f"Action {action.id} failed: {e}")
            return _failure(action, str(e))
        except Exception as e:
            logger.error(f"Action {action.id} raised unexpectedly: {e}", exc_info=True)
            return _failure(action, f"{action.type.value} {action.entity.value} failed")

        elapsed_ms = int((time.time() - start) * 1000)
        logger.info(f"Action {action.type.value} {action.entity.value} completed in {elapsed_ms}ms")
        return result

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _create(self, action: SuggestedAction) -> ExecutedOperation:
        fields = action.data.record_fields()
        if not fields.get("name"):
            raise ActionError(f"A name is required to create a {action.entity.value}")
        record = await self.store.create(action.entity, fields)
        return _success(action, data=record, message=f"Created {action.entity.value} '{record.get('name', fields['name'])}'")

    async def _read(self, action: SuggestedAction) -> ExecutedOperation:
        data = action.data
        if getattr(data, "tree", False) and not data.id:
            roots = await self.store.category_tree()
            noun = "top-level category" if len(roots) == 1 else "top-level categories"
            return _success(action, data=roots, count=len(roots), message=f"Found {len(roots)} {noun}")

        record_filter = {"limit": DEFAULT_READ_LIMIT}
        if data.id:
            record_filter["id"] = data.id
        elif data.search_term():
            record_filter["query"] = data.search_term()
        records = await self.store.read(action.entity, record_filter)
        noun = action.entity.value if len(records) == 1 else _plural(action.entity)
        return _success(action, data=records, count=len(records), message=f"Found {len(records)} {noun}")

    async def _update(self, action: SuggestedAction) -> ExecutedOperation:
        record_id = _require_id(action)
        try:
            record = await self.store.update(action.entity, record_id, action.data.record_fields())
        except RecordNotFoundError:
            raise ActionError(f"{action.entity.value} {record_id} not found")
        return _success(action, data=record, message=f"Updated {action.entity.value} '{record.get('name', record_id)}'")

    async def _delete(self, action: SuggestedAction) -> ExecutedOperation:
        record_id = _require_id(action)
        result = await self.store.delete(action.entity, record_id)
        if not result.get("success"):
            raise ActionError(f"{action.entity.value} {record_id} not found")
        return _success(action, data={"id": record_id}, message=f"Deleted {action.entity.value} {record_id}")


def summarize(results: Sequence[ExecutedOperation]) -> str:
    """One sentence describing a batch, naming each failure."""
    if not results:
        return "No actions were executed."
    failed = [r for r in results if not r.success]
    done = len(results) - len(failed)
    if not failed:
        details = "; ".join(r.message for r in results if r.message)
        summary = f"Completed {done} of {len(results)} action{'s' if len(results) != 1 else ''}."
        return f"{summary} {details}." if details else summary
    reasons = "; ".join(r.error or "unknown error" for r in failed)
    return f"Completed {done} of {len(results)} actions. {len(failed)} failed: {reasons}"


def _require_id(action: SuggestedAction) -> str:
    record_id = action.data.id
    if not record_id:
        raise ActionError(f"An id is required to {action.type.value} a {action.entity.value}")
    if not is_valid_uuid(record_id):
        raise ActionError(f"Invalid {action.entity.value} id: {record_id}")
    return record_id


def _value(member) -> str:
    return member.value if hasattr(member, "value") else str(member)


def _plural(entity: EntityKind) -> str:
    return "categories" if entity == EntityKind.CATEGORY else "payees"


def _success(action: SuggestedAction, *, data=None, count=None, message: str = "") -> ExecutedOperation:
    return ExecutedOperation(
        action_id=action.id,
        type=action.type.value,
        entity=action.entity.value,
        success=True,
        data=data,
        count=count,
        message=message,
    )


def _failure(action: SuggestedAction, error: str) -> ExecutedOperation:
    return ExecutedOperation(
        action_id=action.id,
        type=_value(action.type),
        entity=_value(action.entity),
        success=False,
        error=error,
        message=error,
    )
