"""Command base class, argument mapping, and the command registry."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from loguru import logger

if TYPE_CHECKING:
    from walink.cli import WalinkApp
    from walink.engine.supervisor import LifecycleSupervisor

# full command name -> command class
OPCODES: dict[str, type[IOp]] = {}


@dataclass(slots=True, frozen=True)
class Arg:
    """One positional command argument.

    A leading '*' collects all remaining words as a list.
    """

    name: str
    desc: str = ""

    @property
    def rest(self) -> bool:
        return self.name.startswith("*")

    @property
    def field(self) -> str:
        return self.name.lstrip("*")


def command(names: list[str]):
    """Register an IOp subclass under one or more command names."""

    def register(cls: type[IOp]) -> type[IOp]:
        cls.names = names
        for name in names:
            OPCODES[name] = cls

        return cls

    return register


@dataclass
class IOp:
    """Base for console commands. Subclasses implement argmap() and run()."""

    state: Any = None

    # raw argument text as typed
    oargs__: str = ""

    names = []

    @property
    def app(self) -> WalinkApp:
        return self.state

    @property
    def supervisor(self) -> LifecycleSupervisor:
        return self.state.supervisor

    def argmap(self) -> list[Arg]:
        return []

    def usage(self) -> str:
        args = " ".join(
            f"<{a.field}...>" if a.rest else f"<{a.field}>" for a in self.argmap()
        )
        return f"{self.names[0]} {args}".strip()

    def setup(self) -> bool:
        """Bind words from oargs__ to argmap() fields. False if arguments are missing."""
        words = self.oargs__.split()
        for arg in self.argmap():
            if arg.rest:
                setattr(self, arg.field, words)
                words = []
                continue

            if not words:
                logger.error("Missing argument <{}>. Usage: {}", arg.field, self.usage())
                return False

            setattr(self, arg.field, words.pop(0))

        return True

    async def run(self):
        raise NotImplementedError


class Dispatch:
    """Resolve typed (possibly abbreviated) command names and run them."""

    def __init__(self, opcodes: dict[str, type[IOp]] | None = None):
        self.opcodes = OPCODES if opcodes is None else opcodes

    def resolve(self, typed: str) -> str | None:
        typed = typed.lower()
        if typed in self.opcodes:
            return typed

        matches = [name for name in self.opcodes if name.startswith(typed)]
        if len(matches) == 1:
            return matches[0]

        return None

    async def runop(self, name: str, args: str, state: Any) -> Any:
        resolved = self.resolve(name)
        if resolved is None:
            logger.error("[{}] Command not found (or ambiguous)", name)
            return None

        op = self.opcodes[resolved](state=state, oargs__=args)
        if not op.setup():
            return None

        return await op.run()
