"""Approval inbox receiving checkpoint approval requests."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Protocol

from .contracts import (
    ApprovalPayload,
    ApprovalStatus,
    CheckpointApprovalRequest,
    utcnow,
)

logger = logging.getLogger(__name__)


class ApprovalInbox(Protocol):
    """Protocol for the human-facing approval inbox."""

    async def create(self, request: CheckpointApprovalRequest) -> str:
        """Store ``request`` under ``request.id`` and return that id."""

    async def get(self, ticket_id: str) -> CheckpointApprovalRequest | None:
        """Return the request with ``ticket_id`` if any."""

    async def resolve(
        self, ticket_id: str, payload: ApprovalPayload
    ) -> CheckpointApprovalRequest:
        """Mark the request approved or rejected according to ``payload``."""

    async def pending_for(self, approvable_id: str) -> list[CheckpointApprovalRequest]:
        """Return unresolved requests for one approvable."""


class InMemoryApprovalInbox(ApprovalInbox):
    """Keep approval requests in local memory (tests, CLI demos)."""

    def __init__(self) -> None:
        self._items: Dict[str, CheckpointApprovalRequest] = {}

    async def create(self, request: CheckpointApprovalRequest) -> str:
        self._items[request.id] = request
        logger.info(
            f"Approval requested for {request.approvable_type} {request.approvable_id}: {request.title}"
        )
        return request.id

    async def get(self, ticket_id: str) -> Optional[CheckpointApprovalRequest]:
        return self._items.get(ticket_id)

    async def resolve(
        self, ticket_id: str, payload: ApprovalPayload
    ) -> CheckpointApprovalRequest:
        item = self._items.get(ticket_id)
        if item is None:
            raise KeyError(f"Unknown approval request {ticket_id}")
        resolved = item.model_copy(
            update={
                "status": ApprovalStatus.APPROVED if payload.approved else ApprovalStatus.REJECTED,
                "resolved_at": utcnow(),
            }
        )
        self._items[ticket_id] = resolved
        return resolved

    async def pending_for(self, approvable_id: str) -> List[CheckpointApprovalRequest]:
        return [
            item
            for item in self._items.values()
            if item.approvable_id == approvable_id and item.is_pending
        ]

    async def list_items(self) -> List[CheckpointApprovalRequest]:
        return list(self._items.values())
