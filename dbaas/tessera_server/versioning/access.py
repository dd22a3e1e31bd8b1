"""
Access gate for Tessera workspaces.

Every operation that touches a specific workspace goes through this gate:
1. Resolve the caller identity (UnauthenticatedError if absent)
2. Load the workspace (WorkspaceNotFoundError if absent)
3. Compare owner with caller (AccessDeniedError on mismatch)

Invariants:
    - Only the owner may read or write a workspace
    - Workspace creation requires authentication only
    - Checks run before any data is returned or modified

How to change safely:
    - Sharing or delegation would be a new model; do not bolt it on here
    - Keep denial messages generic so other owners' ids never leak
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .errors import AccessDeniedError, UnauthenticatedError, WorkspaceNotFoundError
from .types import Workspace

if TYPE_CHECKING:
    from ..store.base import WorkspaceStore

logger = logging.getLogger(__name__)


class AccessGate:
    """Identity and ownership checks in front of a workspace store.

    Thread safety:
        Stateless apart from the store reference; safe to share.

    Example:
        >>> gate = AccessGate(store)
        >>> workspace = await gate.require_workspace_access("user_1", ws_id)
    """

    def __init__(self, store: WorkspaceStore) -> None:
        self.store = store

    @staticmethod
    def is_authenticated(actor: str | None) -> bool:
        return bool(actor and actor.strip())

    def require_auth(self, actor: str | None) -> str:
        """Return the caller identity or raise.

        Raises:
            UnauthenticatedError: If actor is missing or blank
        """
        if not self.is_authenticated(actor):
            raise UnauthenticatedError()
        return actor  # type: ignore[return-value]

    @staticmethod
    def owns(actor: str | None, workspace: Workspace) -> bool:
        return bool(actor) and workspace.owner_id == actor

    async def require_workspace_access(
        self,
        actor: str | None,
        workspace_id: str,
    ) -> Workspace:
        """Load a workspace on behalf of its owner.

        Args:
            actor: Caller identity
            workspace_id: Workspace to load

        Returns:
            The workspace record

        Raises:
            UnauthenticatedError: If actor is missing
            WorkspaceNotFoundError: If the workspace does not exist
            AccessDeniedError: If actor is not the owner
        """
        actor = self.require_auth(actor)

        workspace = await self.store.get(workspace_id)
        if workspace is None:
            raise WorkspaceNotFoundError(workspace_id)

        if not self.owns(actor, workspace):
            logger.warning(
                "Workspace access denied",
                extra={"actor": actor, "workspace_id": workspace_id},
            )
            raise AccessDeniedError(actor, workspace_id)

        return workspace
