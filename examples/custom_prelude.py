"""
Example custom macro prelude for nsrewrite.

This file demonstrates how to create custom preludes that teach the
rewriter more macros. Macro bodies are expanded before rewriting, so any
bindings they introduce shadow namespaced variables correctly.

Usage:
    nsrewrite -p examples/custom_prelude.py -n counter- examples/counter.el

Or in the REPL:
    :prelude examples/custom_prelude.py
    (incf total)
"""

from nsrewrite import STANDARD_MACROS
from nsrewrite.errors import MalformedFormError


def incf(place, delta=1):
    return ["setq", place, ["+", place, delta]]


def decf(place, delta=1):
    return ["setq", place, ["-", place, delta]]


def pop(place):
    return ["prog1", ["car", place], ["setq", place, ["cdr", place]]]


def when_let(spec, *body):
    """(when-let ((VAR VAL)) BODY...) for a single binding."""
    if not isinstance(spec, list) or len(spec) != 1 or not isinstance(spec[0], list) \
            or len(spec[0]) != 2:
        raise MalformedFormError("when-let spec must be ((VAR VAL))", spec)
    var = spec[0][0]
    return ["let", spec, ["if", var, ["progn"] + list(body)]]


# Start with the standard macros and extend them
MACROS = {
    **STANDARD_MACROS,

    # Counters
    "incf": incf,
    "decf": decf,

    # Lists
    "pop": pop,

    # Binding
    "when-let": when_let,
}
