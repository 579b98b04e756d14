from typing import Dict, List, Optional

import structlog

from scopedit.document.base import DocumentModel
from scopedit.errors import ChangeStateError, ScopeditError
from scopedit.markup import changes_to_markup
from scopedit.models import ChangeState, ToolResult
from scopedit.redline.proposal import DiffProposal

logger = structlog.get_logger(__name__)


class ChangeLedger:
    """
    Ordered record of the changes proposed in one editing session.

    The ledger owns lifecycle state only; collapsing a change in the document is
    delegated to DiffProposal. Every accept or reject runs in its own document
    transaction.
    """

    def __init__(self, document: DocumentModel, proposal: DiffProposal):
        self.document = document
        self.proposal = proposal
        self._changes: List = []
        self._by_id: Dict[str, object] = {}

    def add(self, change):
        if change.id in self._by_id:
            raise ValueError(f"Duplicate change id: {change.id}")
        self._changes.append(change)
        self._by_id[change.id] = change
        logger.info("Change recorded", change_id=change.id, kind=change.kind)
        return change

    def get(self, change_id: str):
        return self._by_id.get(change_id)

    def all(self) -> List:
        return list(self._changes)

    def pending(self) -> List:
        return [c for c in self._changes if c.is_pending]

    def clear(self):
        self._changes.clear()
        self._by_id.clear()

    def summary(self, pending_only: bool = True) -> str:
        return changes_to_markup(self.pending() if pending_only else self._changes)

    def __len__(self) -> int:
        return len(self._changes)

    async def accept(self, change_id: str) -> ToolResult:
        return await self._resolve(change_id, ChangeState.ACCEPTED)

    async def reject(self, change_id: str) -> ToolResult:
        return await self._resolve(change_id, ChangeState.REJECTED)

    async def accept_all(self) -> ToolResult:
        return await self._resolve_all(ChangeState.ACCEPTED)

    async def reject_all(self) -> ToolResult:
        return await self._resolve_all(ChangeState.REJECTED)

    async def _collapse(self, change_id: str, target: ChangeState):
        change = self.get(change_id)
        if change is None:
            raise ChangeStateError(f"Unknown change: {change_id}")
        if not change.is_pending:
            raise ChangeStateError(f"Change {change_id} is already {change.state.value}")

        async with self.document.transaction():
            if target == ChangeState.ACCEPTED:
                await self.proposal.accept(change)
            else:
                await self.proposal.reject(change)
        change.state = target
        return change

    async def _resolve(self, change_id: str, target: ChangeState) -> ToolResult:
        try:
            change = await self._collapse(change_id, target)
        except ScopeditError as e:
            logger.warning("Change not resolved", change_id=change_id, target=target.value, error=str(e))
            return ToolResult.fail(str(e), data={"change_id": change_id})
        except Exception as e:
            logger.exception("Unexpected error resolving change", change_id=change_id)
            return ToolResult.fail(f"Unexpected error: {e}", data={"change_id": change_id})
        logger.info("Change resolved", change_id=change.id, state=change.state.value)
        return ToolResult.ok({"change_id": change.id, "kind": change.kind, "state": change.state.value})

    async def _resolve_all(self, target: ChangeState) -> ToolResult:
        done: List[str] = []
        failed: List[Dict[str, Optional[str]]] = []
        for change in self.pending():
            result = await self._resolve(change.id, target)
            if result.success:
                done.append(change.id)
            else:
                failed.append({"change_id": change.id, "error": result.error})

        data = {"state": target.value, "resolved": done, "failed": failed}
        if failed and not done:
            return ToolResult.fail(f"{len(failed)} change(s) could not be {target.value}", data=data)
        warnings = [f"{f['change_id']}: {f['error']}" for f in failed]
        return ToolResult.ok(data, warnings=warnings)
