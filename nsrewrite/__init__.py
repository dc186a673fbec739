"""
nsrewrite - namespace qualification for Lisp source trees

Emacs Lisp has one global namespace for functions and one for variables.
nsrewrite emulates module-scoped names by rewriting a block of forms so
that every definition and every reference to it carries a prefix.

Quick Start:
    from nsrewrite import Namespace

    ns = Namespace("foo-")
    ns.rewrite_source('''
        (defvar bar 1)
        (defun baz () bar)
    ''')
    # => [["defvar", "foo-bar", 1], ["defun", "foo-baz", [], "foo-bar"]]

What gets qualified:
    - names defined in the block (defun, defmacro, defsubst, defalias,
      defvar, defconst, defcustom, defvaralias, cl-defstruct)
    - references to names defined earlier in the block or already known
      to the host under the prefixed name
    - never: lambda parameters and let-bound names (unless :let-vars),
      quoted data, numbers, strings, nil, t and keywords

Options:
    :let-vars   - names bound by let/let* are qualified too

define-namespace:
    (define-namespace foo- :let-vars
      (defvar bar 1)
      (defun baz () bar))
"""

__version__ = "0.1.0"

from .errors import (
    NamespaceError,
    ConfigurationError,
    EvaluationError,
    HostExpansionError,
    MalformedFormError,
    ReadError,
)

# Core rewriter components
from .rewriter import (
    rewrite,
    rewrite_forms,
    rewrite_namespace,
    expand_namespace_form,
    wrap_forms,
    ExprType,
    Str,
    Option,
    RuleKind,
    RewriteRule,
    RULES,
    NamespaceContext,
    DefinitionRegistry,
)

# Host environments
from .host import (
    Host,
    Environment,
    LispMacro,
    evaluate,
    STANDARD_MACROS,
    NO_MACROS,
)

# Engine, tracing, reader and printer
from .engine import (
    Namespace,
    RewriteStep,
    RewriteTrace,
    parse_sexpr,
    parse_program,
    format_sexpr,
    format_program,
)

# Public API
__all__ = [
    # Version
    "__version__",
    # Errors
    "NamespaceError",
    "ConfigurationError",
    "EvaluationError",
    "HostExpansionError",
    "MalformedFormError",
    "ReadError",
    # Core
    "rewrite",
    "rewrite_forms",
    "rewrite_namespace",
    "expand_namespace_form",
    "wrap_forms",
    # Types
    "ExprType",
    "Str",
    "Option",
    "RuleKind",
    "RewriteRule",
    "RULES",
    "NamespaceContext",
    "DefinitionRegistry",
    # Hosts
    "Host",
    "Environment",
    "LispMacro",
    "evaluate",
    "STANDARD_MACROS",
    "NO_MACROS",
    # Engine
    "Namespace",
    "RewriteStep",
    "RewriteTrace",
    # Reader / printer
    "parse_sexpr",
    "parse_program",
    "format_sexpr",
    "format_program",
]
