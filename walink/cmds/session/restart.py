"""Command: restart

Category: Session
"""

from dataclasses import dataclass

from walink.cmds.base import IOp, command


@command(names=["restart"])
@dataclass
class IOpRestart(IOp):
    """Drop the current session and reconnect after a short delay."""

    async def run(self):
        await self.supervisor.restart()
