"""Dependencies shared by every tool handler."""

from dataclasses import dataclass
from typing import Optional

import anyio
from mcp.server.fastmcp import Context

from ..auth import identity_from_context
from ..graph import GraphClient, GraphClientProvider

READ_ONLY = {
    "readOnlyHint": True,
    "destructiveHint": False,
    "idempotentHint": True,
    "openWorldHint": True,
}

WRITE = {
    "readOnlyHint": False,
    "destructiveHint": False,
    "idempotentHint": False,
    "openWorldHint": True,
}


@dataclass
class GraphAccess:
    """What a tool handler needs: the client pool and its wall-clock budget."""

    provider: GraphClientProvider
    timeout: float = 25.0

    async def client(self, ctx: Optional[Context]) -> GraphClient:
        """Pooled client for the credential of the request behind ``ctx``."""
        return await self.provider.get_client(identity_from_context(ctx))

    def deadline(self):
        """Cancel scope that aborts in-flight Graph calls once the budget is spent."""
        return anyio.fail_after(self.timeout)
