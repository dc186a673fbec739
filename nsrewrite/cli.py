#!/usr/bin/env python3
"""
nsrewrite Command-Line Interface

Provides interactive REPL, file rewriting, and pipe/filter modes.

Usage:
    nsrewrite                              # Start REPL
    nsrewrite -n foo- source.el            # Rewrite a file under prefix foo-
    nsrewrite source.el                    # Rewrite define-namespace forms only
    nsrewrite -n foo- -e "(defvar bar 1)"  # Rewrite an expression
    cat source.el | nsrewrite -n foo-      # Filter mode

Source files:
    Top-level (define-namespace NAME [:let-vars] BODY...) forms are always
    expanded. Other forms are rewritten under -n NAME if given and passed
    through unchanged otherwise. Every result is loaded into the host
    environment, so later forms see earlier definitions.

REPL Commands:
    :help              Show help
    :namespace NAME    Set the namespace prefix (no NAME: show it)
    :let-vars on|off   Qualify let-bound names
    :prelude NAME      Set macro prelude (standard, none, or path)
    :load FILE         Load definitions from a file into the environment
    :trace on|off      Toggle tracing
    :defs              List known definitions
    :reset             Forget all loaded definitions
    :quit              Exit
"""

import argparse
import glob
import importlib.util
import logging
import sys
from pathlib import Path
from typing import Optional, Dict, List, Tuple

from . import __version__
from .engine import Namespace, RewriteTrace, format_program, parse_program
from .errors import NamespaceError
from .host import Environment, MacroTable, NO_MACROS, STANDARD_MACROS
from .rewriter import ExprType, Option, form_head

logger = logging.getLogger(__name__)

# Try to import readline for better REPL experience
try:
    import readline
    HAS_READLINE = True
except ImportError:
    HAS_READLINE = False

# Built-in macro preludes
BUILTIN_PRELUDES: Dict[str, MacroTable] = {
    "none": NO_MACROS,
    "standard": STANDARD_MACROS,
}

# Standard prelude search paths
PRELUDE_SEARCH_PATHS = [
    Path("./preludes"),
    Path.home() / ".config" / "nsrewrite" / "preludes",
]


def prelude_candidates(name_or_path: str) -> List[Path]:
    """
    Files a prelude argument may refer to, in search order.

    Anything with a .py suffix or a directory part is a path; a bare name
    is looked up as NAME.py in PRELUDE_SEARCH_PATHS.
    """
    path = Path(name_or_path)
    if path.suffix == ".py" or path.parent != Path("."):
        return [path] if path.is_file() else []
    return [d / f"{name_or_path}.py" for d in PRELUDE_SEARCH_PATHS
            if (d / f"{name_or_path}.py").is_file()]


def load_custom_prelude(name_or_path: str) -> Optional[MacroTable]:
    """
    Load a macro table from a Python file.

    The file must define MACROS, a dict mapping macro names to expanders
    (callables receiving the argument forms and returning the expansion).

    Args:
        name_or_path: A path to a .py file, or a name to search for

    Returns:
        The MACROS dict of the first candidate that has one, or None
    """
    for candidate in prelude_candidates(name_or_path):
        spec = importlib.util.spec_from_file_location(f"nsrewrite_prelude_{candidate.stem}", candidate)
        if spec is None or spec.loader is None:
            continue
        module = importlib.util.module_from_spec(spec)
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            logger.error("Error loading prelude from %s: %s", candidate, e)
            continue
        macros = getattr(module, "MACROS", None)
        if isinstance(macros, dict):
            logger.info("loaded %d macros from %s", len(macros), candidate)
            return macros
        logger.warning("%s has no MACROS table", candidate)

    return None


def count_parens(text: str) -> int:
    """Count unbalanced parentheses. Returns >0 if more open than close."""
    depth = 0
    in_string = False
    in_comment = False
    escape = False

    for c in text:
        if in_comment:
            if c == '\n':
                in_comment = False
            continue
        if escape:
            escape = False
            continue
        if c == '\\':
            escape = True
            continue
        if c == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if c == ';':
            in_comment = True
        elif c == '(':
            depth += 1
        elif c == ')':
            depth -= 1

    return depth


class NsCompleter:
    """Tab completer for the nsrewrite REPL."""

    # Commands that can be completed
    COMMANDS = [
        ":help", ":quit", ":exit", ":q",
        ":namespace", ":let-vars", ":prelude", ":load",
        ":trace", ":defs", ":reset",
    ]

    ON_OFF = ["on", "off"]

    def __init__(self, repl: 'NsREPL'):
        self.repl = repl

    def complete(self, text: str, state: int) -> Optional[str]:
        """Return the next possible completion for 'text'."""
        if state == 0:
            line = readline.get_line_buffer() if HAS_READLINE else ""
            self.matches = self._get_matches(text, line)

        try:
            return self.matches[state]
        except IndexError:
            return None

    def _get_matches(self, text: str, line: str) -> list:
        """Get list of matches for the current input."""
        line = line.lstrip()

        if line.startswith(":prelude "):
            return [p for p in BUILTIN_PRELUDES if p.startswith(text)]

        if line.startswith(":trace ") or line.startswith(":let-vars "):
            return [t for t in self.ON_OFF if t.startswith(text)]

        if line.startswith(":load "):
            return self._complete_path(text)

        if text.startswith(":") or (line.startswith(":") and " " not in line):
            return [c for c in self.COMMANDS if c.startswith(text)]

        # In code, complete names the environment knows about
        names = self.repl.env.functions() + self.repl.env.variables() + self.repl.env.macros()
        return sorted(n for n in set(names) if text and n.startswith(text))

    def _complete_path(self, text: str) -> list:
        """Complete file paths; directories get a trailing slash."""
        pattern = (text or "./") + "*"
        return [p + "/" if Path(p).is_dir() else p for p in sorted(glob.glob(pattern))]


class NsREPL:
    """Interactive REPL for nsrewrite."""

    def __init__(self):
        self.env = Environment()
        self.namespace: Optional[Namespace] = None
        self.let_vars = False
        self.trace = False
        self.running = True
        self.multi_line_buffer = ""

        # Set up readline history and completion
        if HAS_READLINE:
            self.history_file = Path.home() / ".nsrewrite_history"
            try:
                readline.read_history_file(self.history_file)
            except (FileNotFoundError, OSError):
                pass
            readline.set_history_length(1000)

            self.completer = NsCompleter(self)
            readline.set_completer(self.completer.complete)
            readline.parse_and_bind("tab: complete")
            readline.set_completer_delims(" \t\n()'`,")

    def save_history(self):
        """Save readline history."""
        if HAS_READLINE:
            try:
                readline.write_history_file(self.history_file)
            except OSError:
                pass

    def set_namespace(self, name: str) -> None:
        """Set the namespace prefix. Raises ConfigurationError for a bad name."""
        options = [Option.QUALIFY_LET_BINDINGS] if self.let_vars else []
        self.namespace = Namespace(name, options=options, host=self.env)

    def set_let_vars(self, enabled: bool) -> None:
        self.let_vars = enabled
        if self.namespace is not None:
            options = [Option.QUALIFY_LET_BINDINGS] if enabled else []
            self.namespace.with_options(*options)

    def set_prelude(self, name: str) -> bool:
        """Set the macro prelude by name or path."""
        name_lower = name.lower()

        if name_lower in BUILTIN_PRELUDES:
            self.env.with_prelude(BUILTIN_PRELUDES[name_lower])
            return True

        custom = load_custom_prelude(name)
        if custom is not None:
            self.env.with_prelude(custom)
            return True

        return False

    def rewrite_block(self, forms: List[ExprType]) -> Tuple[List[ExprType], List[RewriteTrace]]:
        """
        Rewrite a block of top-level forms and load the results.

        define-namespace forms are expanded as their own pass. Runs of other
        forms are one pass under the current namespace, or pass through when
        no namespace is set.

        Returns:
            (rewritten forms, traces of each pass when tracing)
        """
        output: List[ExprType] = []
        traces: List[RewriteTrace] = []
        pending: List[ExprType] = []

        def run_pass(namespace: Optional[Namespace], body: List[ExprType], wrap: bool):
            if namespace is None:
                result = list(body)
            elif self.trace:
                result, trace = namespace.rewrite(body, trace=True)
                traces.append(trace)
            else:
                result = namespace.rewrite(body)
            if wrap:
                result = [namespace.wrap(result)]
            self.env.load_all(result)
            output.extend(result)

        for form in forms:
            if form_head(form) == "define-namespace":
                if pending:
                    run_pass(self.namespace, pending, wrap=False)
                    pending = []
                namespace, body = Namespace.from_form(form, host=self.env)
                run_pass(namespace, body, wrap=True)
            else:
                pending.append(form)
        if pending:
            run_pass(self.namespace, pending, wrap=False)

        return output, traces

    def handle_command(self, line: str) -> Optional[str]:
        """
        Handle a REPL command (starts with :).

        Returns a message to print, or None.
        """
        parts = line[1:].split(None, 1)
        if not parts:
            return "Unknown command. Type :help for help."

        cmd = parts[0].lower()
        arg = parts[1].strip() if len(parts) > 1 else ""

        if cmd == "help":
            return self.help_text()

        elif cmd in ("quit", "exit", "q"):
            self.running = False
            return None

        elif cmd == "namespace":
            if not arg:
                if self.namespace is None:
                    return "No namespace set"
                return f"Namespace: {self.namespace.prefix}"
            try:
                self.set_namespace(arg)
            except NamespaceError as e:
                return f"Error: {e}"
            return f"Namespace set to: {arg}"

        elif cmd == "let-vars":
            if arg.lower() in ("on", "true", "1"):
                self.set_let_vars(True)
            elif arg.lower() in ("off", "false", "0"):
                self.set_let_vars(False)
            else:
                self.set_let_vars(not self.let_vars)
            return f"let-vars {'enabled' if self.let_vars else 'disabled'}"

        elif cmd == "prelude":
            if not arg:
                available = ", ".join(BUILTIN_PRELUDES.keys())
                return f"Usage: :prelude NAME\nAvailable: {available}\nOr provide a path to a .py file"
            if self.set_prelude(arg):
                return f"Prelude set to: {arg}"
            else:
                return f"Unknown prelude: {arg}"

        elif cmd == "load":
            if not arg:
                return "Usage: :load FILENAME"
            try:
                forms = parse_program(Path(arg).read_text())
                self.env.load_all(forms)
            except (OSError, NamespaceError) as e:
                return f"Error loading {arg}: {e}"
            return f"Loaded {len(forms)} forms from {arg}"

        elif cmd == "trace":
            if arg.lower() in ("on", "true", "1"):
                self.trace = True
            elif arg.lower() in ("off", "false", "0"):
                self.trace = False
            else:
                self.trace = not self.trace
            return f"Tracing {'enabled' if self.trace else 'disabled'}"

        elif cmd == "defs":
            return self.definitions_text()

        elif cmd == "reset":
            self.env.clear()
            return "Forgot all definitions"

        else:
            return f"Unknown command: {cmd}. Type :help for help."

    def definitions_text(self) -> str:
        sections = [
            ("Functions", self.env.functions()),
            ("Macros", self.env.macros()),
            ("Variables", self.env.variables()),
        ]
        lines = [f"{title}: {', '.join(names)}" for title, names in sections if names]
        return "\n".join(lines) if lines else "No definitions"

    def help_text(self) -> str:
        """Return help text."""
        return """nsrewrite REPL Commands:
  :help              Show this help
  :namespace NAME    Set the namespace prefix (no NAME: show it)
  :let-vars on|off   Qualify let-bound names
  :prelude NAME      Set macro prelude (standard, none, or path.py)
  :load FILE         Load definitions from a file (not namespaced)
  :trace on|off      Toggle tracing
  :defs              List known definitions
  :reset             Forget all loaded definitions
  :quit              Exit

Input:
  (form ...)                               Rewritten under the current namespace
  (define-namespace foo- [:let-vars] ...)  Rewritten under foo-
"""

    def process_line(self, line: str) -> Optional[str]:
        """
        Process a complete input.

        Returns the result to print, or None.
        """
        line = line.strip()

        if not line:
            return None

        if line.startswith(":"):
            return self.handle_command(line)

        try:
            forms = parse_program(line)
            if not forms:
                return None
            output, traces = self.rewrite_block(forms)
        except NamespaceError as e:
            return f"Error: {e}"

        result = format_program(output)
        for trace in traces:
            if trace.steps:
                result += "\n" + trace.format("kinds")
        return result

    def run(self, banner: bool = True):
        """Run the REPL loop."""
        if banner:
            print("nsrewrite - namespace qualification for Lisp forms")
            print("Type :help for help, :quit to exit")
            print("Multi-line input: forms with unbalanced parens continue on next line")
            print()

        while self.running:
            try:
                if self.multi_line_buffer:
                    prompt = "...... "
                else:
                    prefix = self.namespace.prefix if self.namespace else ""
                    prompt = f"ns[{prefix}]> "

                line = input(prompt)

                if self.multi_line_buffer:
                    self.multi_line_buffer += "\n" + line
                else:
                    self.multi_line_buffer = line

                paren_count = count_parens(self.multi_line_buffer)

                if paren_count > 0:
                    continue
                elif paren_count < 0:
                    print("Error: Unbalanced parentheses (too many closing)")
                    self.multi_line_buffer = ""
                    continue

                complete_input = self.multi_line_buffer
                self.multi_line_buffer = ""

                result = self.process_line(complete_input)
                if result:
                    print(result)

            except EOFError:
                print()
                break
            except KeyboardInterrupt:
                if self.multi_line_buffer:
                    print("\nInput cancelled")
                    self.multi_line_buffer = ""
                else:
                    print()
                continue

        self.save_history()


class ScriptRunner:
    """Rewrites source files, expressions and stdin."""

    def __init__(self):
        self.repl = NsREPL()
        self.wrap = False

    def _emit(self, source: str, text: str) -> int:
        try:
            forms = parse_program(text)
            output, traces = self.repl.rewrite_block(forms)
        except NamespaceError as e:
            print(f"{source}: Error: {e}", file=sys.stderr)
            return 1

        if self.wrap and output:
            output = [["progn"] + output]
        if output:
            print(format_program(output))
        for trace in traces:
            print(trace.summary(), file=sys.stderr)
        return 0

    def run_script(self, path: Path) -> int:
        """
        Rewrite a source file and print the result.

        Returns:
            Exit code (0 for success)
        """
        try:
            text = path.read_text()
        except OSError as e:
            print(f"Error reading {path}: {e}", file=sys.stderr)
            return 1
        return self._emit(str(path), text)

    def run_expression(self, expr_str: str) -> int:
        """Rewrite the forms in a string. Returns an exit code."""
        return self._emit("<expr>", expr_str)

    def run_stdin(self) -> int:
        """Rewrite everything read from stdin. Returns an exit code."""
        return self._emit("<stdin>", sys.stdin.read())


def configure_logging(verbosity: int) -> None:
    """Send log records to stderr: INFO with -v, DEBUG with -vv."""
    if verbosity <= 0:
        return
    level = logging.INFO if verbosity == 1 else logging.DEBUG
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="nsrewrite",
        description="nsrewrite - namespace qualification for Lisp forms",
        epilog="Examples:\n"
               "  nsrewrite                           Start REPL\n"
               "  nsrewrite -n foo- source.el         Rewrite a file\n"
               "  nsrewrite -n foo- -e '(defvar x 1)' Rewrite an expression\n"
               "  cat source.el | nsrewrite -n foo-   Filter mode\n",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        "script",
        nargs="?",
        help="Source file to rewrite (.el)"
    )

    parser.add_argument(
        "-n", "--namespace",
        help="Namespace prefix for forms outside define-namespace"
    )

    parser.add_argument(
        "-l", "--let-vars",
        action="store_true",
        help="Qualify names bound by let and let*"
    )

    parser.add_argument(
        "-e", "--expr",
        help="Rewrite the forms in a string"
    )

    parser.add_argument(
        "-p", "--prelude",
        default="standard",
        help="Macro prelude (standard, none, or path.py)"
    )

    parser.add_argument(
        "-d", "--defs",
        action="append",
        default=[],
        help="Load definitions from a file first (can be specified multiple times)"
    )

    parser.add_argument(
        "-t", "--trace",
        action="store_true",
        help="Print a summary of each pass to stderr"
    )

    parser.add_argument(
        "-w", "--wrap",
        action="store_true",
        help="Wrap the output in a single progn"
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Do not print the REPL banner or report --defs files as they load"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Log to stderr (-vv for debug output)"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    args = parser.parse_args()
    configure_logging(args.verbose)

    runner = ScriptRunner()
    runner.wrap = args.wrap

    if not runner.repl.set_prelude(args.prelude):
        print(f"Unknown prelude: {args.prelude}", file=sys.stderr)
        sys.exit(1)

    runner.repl.trace = args.trace
    runner.repl.let_vars = args.let_vars
    if args.namespace:
        try:
            runner.repl.set_namespace(args.namespace)
        except NamespaceError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)

    for defs_file in args.defs:
        try:
            runner.repl.env.load_all(parse_program(Path(defs_file).read_text()))
            if not args.quiet:
                print(f"Loaded definitions from {defs_file}", file=sys.stderr)
        except (OSError, NamespaceError) as e:
            print(f"Error loading {defs_file}: {e}", file=sys.stderr)
            sys.exit(1)

    if args.script:
        sys.exit(runner.run_script(Path(args.script)))

    elif args.expr:
        sys.exit(runner.run_expression(args.expr))

    elif not sys.stdin.isatty():
        sys.exit(runner.run_stdin())

    else:
        runner.repl.run(banner=not args.quiet)


if __name__ == "__main__":
    main()
