"""Command: status

Category: Session
"""

from dataclasses import dataclass

from loguru import logger

from walink.cmds.base import IOp, command


@command(names=["status"])
@dataclass
class IOpStatus(IOp):
    """Show the connection phase, credentials, and reconnect state."""

    async def run(self):
        report = self.supervisor.getStatus()
        for key, value in report.asdict().items():
            logger.info("{:>20}: {}", key, value)

        return report
