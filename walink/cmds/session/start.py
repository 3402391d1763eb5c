"""Command: start

Category: Session
"""

from dataclasses import dataclass

from walink.cmds.base import IOp, command


@command(names=["start", "connect"])
@dataclass
class IOpStart(IOp):
    """Start connecting (no-op if a session is already open or pending)."""

    async def run(self):
        await self.supervisor.start()
