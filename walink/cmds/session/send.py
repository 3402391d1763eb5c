"""Command: send

Category: Session
"""

from dataclasses import dataclass, field

from loguru import logger

from walink.cmds.base import Arg, IOp, command
from walink.engine.errors import InvalidDestination, NotConnected, SendFailed


@command(names=["send"])
@dataclass
class IOpSend(IOp):
    """Send a text message to a phone number (digits with country code)."""

    destination: str = field(init=False)
    body: list[str] = field(init=False)

    def argmap(self):
        return [
            Arg("destination", desc="Phone number with country code"),
            Arg("*body", desc="Message text"),
        ]

    async def run(self):
        text = " ".join(self.body)
        if not text:
            logger.error("Missing message text. Usage: {}", self.usage())
            return None

        try:
            receipt = await self.supervisor.sendMessage(self.destination, text)
        except (InvalidDestination, NotConnected, SendFailed) as e:
            logger.error("{}", e)
            return None

        self.app.recentDestinations[receipt.destination] = None
        logger.info("[{}] Sent message id {}", receipt.destination, receipt.id)
        return receipt
