"""Command: debug

Category: Utilities
"""

import ast
import inspect
from dataclasses import dataclass, field

from loguru import logger

from walink.cmds.base import Arg, IOp, command
from walink.engine.primitives import normalizeDestination


def build_context(op: IOp) -> dict:
    """Build the execution namespace for debug code.

    Returns a dict suitable as globals for eval()/exec().
    Full builtins are included -- this is a local debugging tool,
    not a sandbox.
    """
    state = op.state
    supervisor = state.supervisor
    return {
        "__builtins__": __builtins__,
        # App state
        "state": state,
        "sup": supervisor,
        "conn": supervisor.state,
        "handle": supervisor.handle,
        "store": supervisor.store,
        "bus": supervisor.bus,
        "config": supervisor.config,
        # Helper functions
        "status": supervisor.getStatus,
        "norm": normalizeDestination,
        # Utilities
        "logger": logger,
    }


async def exec_debug(code: str, context: dict):
    """Run one line of operator code against context.

    Expressions are evaluated and their (awaited, if awaitable) result
    logged; anything else runs as statements. Top-level await works in
    both forms, so `await sup.restart()` needs no wrapper.
    """
    flags = ast.PyCF_ALLOW_TOP_LEVEL_AWAIT
    try:
        compiled = compile(code, "<debug>", "eval", flags=flags)
        isExpression = True
    except SyntaxError:
        compiled = compile(code, "<debug>", "exec", flags=flags)
        isExpression = False

    result = eval(compiled, context)
    if inspect.isawaitable(result):
        result = await result

    if isExpression and result is not None:
        logger.info("-> {}", result)


@command(names=["debug"])
@dataclass
class IOpDebug(IOp):
    """Execute Python code with shortcuts to live supervisor objects.

    Examples:
        debug status().phase
        debug conn.attemptCount
        debug store.records()
        debug await sup.restart()
    """

    code: list[str] = field(init=False)

    def argmap(self) -> list[Arg]:
        return [Arg("*code", desc="Python expression or statement to execute")]

    async def run(self):
        code_str = (self.oargs__ or "").strip()
        if not code_str:
            logger.error("No code provided. Usage: debug <python expression>")
            return

        context = build_context(self)
        try:
            await exec_debug(code_str, context)
        except Exception as e:
            logger.error("Debug error: {}", e)
            if self.app.bigerror:
                logger.exception("Full traceback:")
