"""
Mutation Coordinator.

Orchestrates one user-initiated edit end to end:

    Idle --submit(diff)--> Submitting --success--> AwaitingAck --grace--> Settled
                                     \\--failure--> RolledBack
    Submitting --superseded by newer edit--> continues; its ack becomes a no-op

1. Diff prior vs proposed, excluding identity fields.
2. Empty diff → no write, overlay untouched.
3. Register the full proposed value as the overlay, then write the diff only.
4. Success → acknowledge after the grace window.
5. Failure → roll back immediately and raise WriteFailure (no retry).

Two overlapping edits never corrupt each other: the overlay store only acts
on the token of the newest registration.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable

from optisync.contracts.json_types import CreateFn, DeleteFn, WriteFn
from optisync.core.diff import compute_diff, is_diff_empty, log_diff
from optisync.core.errors import InvalidCreateResponse, WriteFailure
from optisync.core.state_machine import EditStatus, OperationStatus, is_edit_terminal
from optisync.models.edit import EditResult
from optisync.storage.overlay_store import Operation, OperationToken, PendingOverlayStore

logger = logging.getLogger(__name__)


class MutationCoordinator:
    """
    Drives edits through the overlay store and the external write.

    Usage:
        coordinator = MutationCoordinator(store, write=api.patch_project)
        result = await coordinator.submit_edit("proj-1", prior, proposed)
        result.status  # awaiting_ack, then settled once the grace period ends
    """

    def __init__(
        self,
        store: PendingOverlayStore,
        write: WriteFn,
        identity_fields: Iterable[str] | None = None,
        grace_ms: int | None = None,
    ) -> None:
        settings = store.settings
        self._store = store
        self._write = write
        self._identity_fields = tuple(
            settings.identity_fields if identity_fields is None else identity_fields
        )
        self._grace_ms = settings.ack_grace_ms if grace_ms is None else grace_ms

    @property
    def grace_ms(self) -> int:
        return self._grace_ms

    async def submit_edit(
        self,
        entity_id: str,
        prior: Any,
        proposed: Any,
    ) -> EditResult:
        """
        Submit an edit of ``entity_id`` from ``prior`` to ``proposed``.

        Raises:
            ValidationError: ``prior``/``proposed`` are not mappings.  Raised
                before any overlay registration.
            WriteFailure: The write failed; the overlay is already rolled back.
        """
        result = EditResult(entity_id=entity_id)
        diff = compute_diff(prior, proposed, exclude_fields=self._identity_fields)
        log_diff(entity_id, prior, proposed, diff)

        if is_diff_empty(diff):
            result.transition_to(EditStatus.UNCHANGED)
            logger.debug(f"No changes for {entity_id[:8]}; skipping write")
            return result

        token = self._store.begin_operation(entity_id, proposed)
        result.diff = diff
        logger.info(f"Submitting {entity_id[:8]} gen={token.generation}: {sorted(diff)}")
        return await self._run(result, token, lambda: self._write(entity_id, diff))

    async def submit_deletion(self, entity_id: str, delete: DeleteFn) -> EditResult:
        """Hide ``entity_id`` optimistically while ``delete`` runs."""
        result = EditResult(entity_id=entity_id)
        token = self._store.begin_deletion(entity_id)
        return await self._run(result, token, lambda: delete(entity_id))

    async def submit_creation(
        self,
        temp_id: str,
        value: Any,
        create: CreateFn,
    ) -> EditResult:
        """
        Show ``value`` under ``temp_id`` while ``create`` runs.

        ``create`` returns the server-assigned id; it is recorded on the
        pending creation so the compositor can match the eventual snapshot.

        Raises:
            WriteFailure: ``create`` raised; the temporary overlay is rolled back.
            InvalidCreateResponse: ``create`` returned no id (not a non-empty
                string); the temporary overlay is rolled back.
        """
        result = EditResult(entity_id=temp_id)
        diff = compute_diff(None, value, exclude_fields=self._identity_fields)
        token = self._store.begin_creation(temp_id, value)
        result.diff = diff

        async def _create() -> str:
            real_id = await create(temp_id, diff)
            if not isinstance(real_id, str) or not real_id:
                raise InvalidCreateResponse(temp_id, real_id)
            self._store.resolve_creation(temp_id, real_id)
            return real_id

        return await self._run(result, token, _create)

    async def _run(
        self,
        result: EditResult,
        token: OperationToken,
        call: Callable[[], Awaitable[Any]],
    ) -> EditResult:
        entity_id = token.entity_id
        op = self._store.get_operation(entity_id)
        result.generation = token.generation
        result.operation_id = op.operation_id if op is not None else None
        result.transition_to(EditStatus.SUBMITTING)

        try:
            response = await call()
        except asyncio.CancelledError:
            self._store.rollback(entity_id, token)
            result.transition_to(EditStatus.ROLLED_BACK)
            logger.info(f"Write for {entity_id[:8]} gen={token.generation} cancelled; rolled back")
            raise
        except InvalidCreateResponse:
            self._store.rollback(entity_id, token)
            result.transition_to(EditStatus.ROLLED_BACK)
            logger.warning(f"Create for {entity_id[:8]} returned no entity id; rolled back")
            raise
        except Exception as exc:
            self._store.rollback(entity_id, token)
            result.transition_to(EditStatus.ROLLED_BACK)
            logger.warning(f"Write for {entity_id[:8]} gen={token.generation} failed: {exc!r}")
            raise WriteFailure(entity_id, result.diff, exc) from exc

        result.response = response
        result.transition_to(EditStatus.AWAITING_ACK)
        self._store.acknowledge(
            entity_id,
            token,
            self._grace_ms,
            on_settled=lambda settled: _finish_edit(result, settled),
        )
        return result


def _finish_edit(result: EditResult, op: Operation) -> None:
    """Map the operation's terminal state onto the edit."""
    if is_edit_terminal(result.status):
        return
    if op.status == OperationStatus.ACKNOWLEDGED:
        result.transition_to(EditStatus.SUPERSEDED if op.is_superseded else EditStatus.SETTLED)
    else:
        result.transition_to(EditStatus.ROLLED_BACK)
