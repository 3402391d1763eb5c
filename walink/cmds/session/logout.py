"""Command: logout

Category: Session
"""

from dataclasses import dataclass

from walink.cmds.base import IOp, command


@command(names=["logout"])
@dataclass
class IOpLogout(IOp):
    """Log out and delete stored credentials (pairing is required again after start)."""

    async def run(self):
        await self.supervisor.logout()
