"""Command: quit

Category: Utilities
"""

from dataclasses import dataclass

from walink.cmds.base import IOp, command


@command(names=["quit", "exit"])
@dataclass
class IOpQuit(IOp):
    """Stop the supervisor and exit the console."""

    async def run(self):
        self.app.exiting = True
