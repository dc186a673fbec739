"""
Namespace engine, reader and printer for nsrewrite

nsrewrite - namespace qualification for Lisp source trees

This module provides the Namespace class (a configured, reusable rewrite
pass), tracing of what a pass did, and the reader/printer that turns Lisp
source text into forms and back.

Source syntax:
    (a b c)     - list
    foo, 1+     - symbols
    42, 1.5     - numbers
    "text"      - string literal (read as Str)
    'x          - (quote x)
    #'f         - (function f)
    `x ,y ,@z   - (` x), (, y), (,@ z)
    ; comment   - ignored to end of line

Example:
    from nsrewrite import Namespace

    ns = Namespace("foo-")
    ns.rewrite_source('''
        (defvar bar 1)
        (defun baz () bar)
    ''')
    # => [["defvar", "foo-bar", 1], ["defun", "foo-baz", [], "foo-bar"]]

Tracing:
    Use Namespace.rewrite(forms, trace=True) to see every qualification,
    definition and macro expansion the pass made.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple, Union

from .errors import ReadError
from .host import Environment, Host
from .rewriter import (
    ExprType, Str, RuleKind, DefinitionRegistry, NamespaceContext, Option,
    rewrite_forms, parse_options, validate_namespace_name, split_namespace_form,
    wrap_forms, symbol,
)

logger = logging.getLogger(__name__)


# ============================================================
# Reader
# ============================================================

_DELIMITERS = frozenset(" \t\r\n\f()\";'`,")
_INT_RE = re.compile(r'^[+-]?\d+\.?$')
_FLOAT_RE = re.compile(r'^[+-]?(\d+\.\d+|\.\d+|\d+(\.\d*)?[eE][+-]?\d+)$')
_STRING_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", '"': '"'}

# Reader prefixes and the forms they stand for
_PREFIX_FORMS = {",@": ",@", "#'": "function", "'": "quote", "`": "`", ",": ","}


class _Reader:
    """Recursive descent reader over a source string."""

    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def skip_whitespace(self) -> None:
        """Skip whitespace and ; comments."""
        text = self.text
        while self.pos < len(text):
            c = text[self.pos]
            if c == ';':
                newline = text.find('\n', self.pos)
                self.pos = len(text) if newline < 0 else newline + 1
            elif c.isspace():
                self.pos += 1
            else:
                break

    def at_end(self) -> bool:
        self.skip_whitespace()
        return self.pos >= len(self.text)

    def read(self) -> ExprType:
        """Read one form."""
        if self.at_end():
            raise ReadError("unexpected end of input")
        text = self.text
        c = text[self.pos]

        if c == '(':
            self.pos += 1
            items = []
            while True:
                if self.at_end():
                    raise ReadError("unbalanced parentheses: missing ')'")
                if text[self.pos] == ')':
                    self.pos += 1
                    return items
                items.append(self.read())

        if c == ')':
            raise ReadError(f"unexpected ')' at offset {self.pos}")

        for prefix, head in _PREFIX_FORMS.items():
            if text.startswith(prefix, self.pos):
                self.pos += len(prefix)
                return [head, self.read()]

        if c == '"':
            return self.read_string()

        return self.read_atom()

    def read_string(self) -> Str:
        text = self.text
        start = self.pos
        self.pos += 1
        chars = []
        while self.pos < len(text):
            c = text[self.pos]
            if c == '"':
                self.pos += 1
                return Str("".join(chars))
            if c == '\\' and self.pos + 1 < len(text):
                escaped = text[self.pos + 1]
                chars.append(_STRING_ESCAPES.get(escaped, escaped))
                self.pos += 2
                continue
            chars.append(c)
            self.pos += 1
        raise ReadError(f"unterminated string starting at offset {start}")

    def read_atom(self) -> ExprType:
        text = self.text
        start = self.pos
        while self.pos < len(text) and text[self.pos] not in _DELIMITERS:
            self.pos += 1
        token = text[start:self.pos]
        if _INT_RE.match(token):
            return int(token.rstrip('.'))
        if _FLOAT_RE.match(token):
            return float(token)
        return token


def parse_sexpr(s: str) -> ExprType:
    """
    Parse a single S-expression string into a form.

    Examples:
        "(+ x 1)" -> ["+", "x", 1]
        "'(a b)" -> ["quote", ["a", "b"]]
        "" -> None

    Raises:
        ReadError: On unbalanced input or trailing text
    """
    reader = _Reader(s)
    if reader.at_end():
        return None
    form = reader.read()
    if not reader.at_end():
        raise ReadError(f"unexpected text after form at offset {reader.pos}")
    return form


def parse_program(text: str) -> List[ExprType]:
    """Parse every top-level form in a source string."""
    reader = _Reader(text)
    forms = []
    while not reader.at_end():
        forms.append(reader.read())
    return forms


# ============================================================
# Printer
# ============================================================

_SHORTHANDS = {head: prefix for prefix, head in _PREFIX_FORMS.items()}


def _format_string(s: str) -> str:
    escaped = s.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def format_sexpr(expr: ExprType) -> str:
    """
    Format a form as an S-expression string.

    Examples:
        ["+", "x", 1] -> "(+ x 1)"
        ["quote", "x"] -> "'x"
        ["function", "f"] -> "#'f"
        Str("hi") -> '"hi"'
    """
    if isinstance(expr, list):
        if not expr:
            return "()"
        if len(expr) == 2 and symbol(expr[0]) and expr[0] in _SHORTHANDS:
            return _SHORTHANDS[expr[0]] + format_sexpr(expr[1])
        return "(" + " ".join(format_sexpr(e) for e in expr) + ")"
    if isinstance(expr, Str):
        return _format_string(expr)
    return str(expr)


def format_program(forms: List[ExprType]) -> str:
    """Format top-level forms, one per line."""
    return "\n".join(format_sexpr(form) for form in forms)


# ============================================================
# Tracing
# ============================================================

class RewriteStep:
    """A single step of a namespacing pass."""

    def __init__(self, kind: RuleKind, before: ExprType, after: ExprType):
        self.kind = kind
        self.before = before
        self.after = after

    def __repr__(self) -> str:
        return f"{self.kind.value}: {format_sexpr(self.before)} -> {format_sexpr(self.after)}"

    def to_dict(self) -> Dict:
        """Convert step to dictionary for serialization."""
        return {
            "kind": self.kind.value,
            "before": self.before,
            "after": self.after,
        }


class RewriteTrace:
    """
    A trace of the steps of one namespacing pass.

    Provides multiple formatting options:
        - Default repr: verbose multi-line format
        - format("compact"): single line summary
        - format("kinds"): just the kinds of steps, in order
        - to_dict(): JSON-serializable dictionary
    """

    def __init__(self):
        self.steps: List[RewriteStep] = []
        self.initial: List[ExprType] = []
        self.final: List[ExprType] = []

    def record(self, kind: RuleKind, before: ExprType, after: ExprType) -> None:
        self.steps.append(RewriteStep(kind, before, after))

    def format(self, style: str = "verbose") -> str:
        """
        Format the trace in different styles.

        Args:
            style: One of "verbose", "compact", "kinds"

        Returns:
            Formatted string representation of the trace.
        """
        if style == "compact":
            renamed = [f"{format_sexpr(s.before)}->{format_sexpr(s.after)}"
                       for s in self.steps if s.kind != RuleKind.MACRO_EXPANSION
                       and s.kind not in (RuleKind.LOCAL_BINDING, RuleKind.SEQUENTIAL_BINDING)]
            return f"{len(self.initial)} forms --[{', '.join(renamed)}]--> {len(self.final)} forms"

        elif style == "kinds":
            kinds = [s.kind.value for s in self.steps]
            return " -> ".join(kinds) if kinds else "(nothing qualified)"

        else:  # verbose (default)
            return repr(self)

    def __repr__(self) -> str:
        lines = [f"Initial: {format_program(self.initial)}"]
        for i, step in enumerate(self.steps, 1):
            lines.append(f"  {i}. {step}")
        lines.append(f"Final: {format_program(self.final)}")
        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self):
        """Iterate over rewrite steps."""
        return iter(self.steps)

    def __bool__(self) -> bool:
        """True if the pass did anything."""
        return len(self.steps) > 0

    def to_dict(self) -> Dict:
        """Convert trace to dictionary for JSON serialization."""
        return {
            "initial": self.initial,
            "final": self.final,
            "steps": [step.to_dict() for step in self.steps],
            "step_count": len(self.steps),
        }

    def kind_counts(self) -> Dict[str, int]:
        """Count steps of each kind."""
        counts: Dict[str, int] = {}
        for step in self.steps:
            counts[step.kind.value] = counts.get(step.kind.value, 0) + 1
        return counts

    def summary(self) -> str:
        """Get a brief summary of the pass."""
        if not self.steps:
            return "Nothing qualified"
        counts = self.kind_counts()
        parts = ", ".join(f"{n} {kind}" for kind, n in sorted(counts.items()))
        return f"{len(self.steps)} steps: {parts}"


# ============================================================
# Namespace
# ============================================================

class Namespace:
    """
    A configured namespacing pass.

    Holds the prefix, the options and the host, and runs the rewrite over
    blocks of top-level forms. Each call to rewrite() is an independent
    pass: definitions registered during one pass are only visible to later
    passes once the host has loaded them.

    Example:
        from nsrewrite import Namespace, Option

        ns = Namespace("foo-", options=[Option.QUALIFY_LET_BINDINGS])
        ns.rewrite_source("(let ((x 1)) x)")
        # => [["let", [["foo-x", 1]], "foo-x"]]
    """

    def __init__(self, name: str, options: Union[None, str, List[Any]] = None,
                 host: Optional[Host] = None):
        """
        Initialize a Namespace.

        Args:
            name: The namespace prefix, e.g. "foo-"
            options: Option flags. Default: none.
            host: Host environment. Default: a fresh Environment with
                the standard macros.

        Raises:
            ConfigurationError: For a bad name or an unknown option
        """
        self.prefix = validate_namespace_name(name)
        self.options: frozenset = parse_options(options)
        self.host: Host = host if host is not None else Environment()
        self.registry = DefinitionRegistry()

    @property
    def let_vars(self) -> bool:
        return Option.QUALIFY_LET_BINDINGS in self.options

    def with_options(self, *options: Any) -> 'Namespace':
        """
        Replace the option set.

        Enables fluent construction:
            ns = Namespace("foo-").with_options(":let-vars")

        Returns:
            self for chaining
        """
        self.options = parse_options(options)
        return self

    def with_host(self, host: Host) -> 'Namespace':
        """Use a different host. Returns self."""
        self.host = host
        return self

    def rewrite(self, forms: List[ExprType], trace: bool = False):
        """
        Qualify a block of top-level forms.

        Args:
            forms: Top-level forms in evaluation order
            trace: If True, return (forms, trace) tuple

        Returns:
            Rewritten forms, or (forms, trace) if trace=True
        """
        forms = list(forms)
        trace_obj = RewriteTrace() if trace else None
        ctx = NamespaceContext(self.prefix, self.options, self.host, trace=trace_obj)
        logger.debug("namespace %s: rewriting %d forms", self.prefix, len(forms))
        result = rewrite_forms(forms, ctx)
        self.registry = ctx.registry
        logger.debug("namespace %s: %d definitions", self.prefix, len(ctx.registry))
        if trace_obj is not None:
            trace_obj.initial = forms
            trace_obj.final = result
            return result, trace_obj
        return result

    def rewrite_source(self, text: str, trace: bool = False):
        """Read source text and rewrite every form in it."""
        return self.rewrite(parse_program(text), trace=trace)

    def wrap(self, forms: List[ExprType]) -> List:
        """Wrap forms as (progn FORMS...)."""
        return wrap_forms(forms)

    def __call__(self, forms: List[ExprType], **kwargs):
        """Make the namespace callable: ns(forms) is shorthand for ns.rewrite(forms)."""
        return self.rewrite(forms, **kwargs)

    def __repr__(self) -> str:
        flags = ", ".join(sorted(o.value for o in self.options))
        return f"Namespace({self.prefix!r}{', ' + flags if flags else ''})"

    @classmethod
    def from_form(cls, form: ExprType, host: Optional[Host] = None) -> Tuple['Namespace', List[ExprType]]:
        """
        Build a Namespace from a define-namespace form.

        Returns:
            (namespace, body forms)
        """
        name, options, body = split_namespace_form(form)
        return cls(name, options=options, host=host), body
