"""Console commands for the walink REPL.

Each command is an IOp dataclass registered by name with @command.
Importing this package imports every command module so the registry
is complete.
"""

from walink.cmds.base import OPCODES, Arg, Dispatch, IOp, command

# registration side effects
from walink.cmds.session import logout, restart, send, start, status  # noqa: F401
from walink.cmds.utilities import debug, quit  # noqa: F401

__all__ = ["OPCODES", "Arg", "Dispatch", "IOp", "command"]
