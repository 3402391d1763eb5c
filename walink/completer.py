"""Command autocompletion for the walink REPL.

Provides completion for command names (with docstring descriptions)
and for recently used send destinations.
"""

from prompt_toolkit.completion import Completer, Completion


class CommandCompleter(Completer):
    """Completer for walink console commands and their arguments."""

    # Map resolved command names to argument completer method names
    _ARG_COMPLETERS = {
        "send": "_complete_destinations",
    }

    def __init__(self, app):
        """app is the WalinkApp instance."""
        self.app = app

    def get_completions(self, document, complete_event):
        text = document.text_before_cursor

        # Split into command and rest
        parts = text.lstrip().split(None, 1)  # split on first whitespace
        if len(parts) <= 1 and not text.endswith(" "):
            # Still typing the command name
            prefix = parts[0] if parts else ""
            yield from self._complete_command_name(prefix)
        else:
            cmd_name = parts[0]
            arg_text = parts[1] if len(parts) > 1 else ""
            yield from self._complete_arguments(cmd_name, arg_text)

    def _complete_command_name(self, prefix):
        prefix_lower = prefix.lower()
        for cmd_name in sorted(self.app.dispatch.opcodes):
            if cmd_name.startswith(prefix_lower):
                cls = self.app.dispatch.opcodes[cmd_name]
                # Extract first line of docstring as description
                doc = ""
                if cls.__doc__:
                    doc = cls.__doc__.strip().split("\n")[0]
                yield Completion(
                    cmd_name,
                    start_position=-len(prefix),
                    display_meta=doc,
                )

    def _complete_arguments(self, cmd_name, arg_text):
        resolved = self.app.dispatch.resolve(cmd_name)
        method_name = self._ARG_COMPLETERS.get(resolved)
        if method_name:
            method = getattr(self, method_name)
            # Get the word being typed (last whitespace-separated token)
            words = arg_text.split()
            current_word = words[-1] if words and not arg_text.endswith(" ") else ""
            yield from method(current_word, arg_text=arg_text)

    def _complete_destinations(self, prefix, arg_text=""):
        # only the first argument is a destination
        if len(arg_text.split()) > 1 or (arg_text and arg_text.endswith(" ")):
            return

        for destination in reversed(self.app.recentDestinations):
            if destination.startswith(prefix):
                yield Completion(destination, start_position=-len(prefix))
