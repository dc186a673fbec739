"""
Core rewrite engine for namespacing Lisp forms.

nsrewrite - namespace qualification for Lisp source trees

This module walks symbolic expression trees and qualifies every definition
and every reference to a namespaced definition with a prefix, leaving local
bindings and unrelated symbols alone.

Forms are plain Python values:
    symbol          - str
    string literal  - Str (a str subclass)
    number          - int or float
    list            - list of forms ([] is the empty list / nil)

Example:
    from nsrewrite import Environment, rewrite_namespace, parse_program

    forms = parse_program("(defvar bar 1) (defun baz () bar)")
    rewrite_namespace("foo-", [], forms, Environment())
    # => [["defvar", "foo-bar", 1], ["defun", "foo-baz", [], "foo-bar"]]
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union, TYPE_CHECKING

from .errors import ConfigurationError, MalformedFormError, NamespaceError

if TYPE_CHECKING:
    from .host import Host

logger = logging.getLogger(__name__)


class Str(str):
    """A string literal, as opposed to a symbol (which is a plain str)."""

    __slots__ = ()

    def __repr__(self) -> str:
        return f"Str({str.__repr__(self)})"


# Type aliases
ExprType = Union[int, float, str, List]
RuleHandler = Callable[[List, "NamespaceContext"], ExprType]


# ============================================================
# Primitive Operations (Lisp-like list operations)
# ============================================================

def car(lst: List) -> Any:
    """
    Return the first element of a list (head).

    Raises:
        TypeError: If argument is not a list
        ValueError: If list is empty
    """
    if not isinstance(lst, list):
        raise TypeError("car: argument must be a list")
    if not lst:
        raise ValueError("car: argument is an empty list")
    return lst[0]


def cdr(lst: List) -> List:
    """Return all but the first element of a list (tail)."""
    if not isinstance(lst, list):
        raise TypeError("cdr: argument must be a list")
    return lst[1:] if lst else []


def compound(exp: ExprType) -> bool:
    """Check if an expression is compound (a list)."""
    return isinstance(exp, list)


def null(s: Any) -> bool:
    """Check if an expression is the empty list."""
    return s == [] and isinstance(s, list)


def symbol(exp: ExprType) -> bool:
    """Check if an expression is a symbol (a str that is not a string literal)."""
    return isinstance(exp, str) and not isinstance(exp, Str)


def keyword(exp: ExprType) -> bool:
    """Check if an expression is a keyword symbol such as :group."""
    return symbol(exp) and len(exp) > 1 and exp.startswith(":")


def self_evaluating(exp: ExprType) -> bool:
    """
    Check if a symbol evaluates to itself and so can never name a definition.

    Covers nil, t and keywords.
    """
    return exp in ("nil", "t") or keyword(exp)


def form_head(exp: ExprType) -> Optional[str]:
    """Return the head symbol of a list form, or None."""
    if compound(exp) and exp and symbol(exp[0]):
        return exp[0]
    return None


# ============================================================
# Options
# ============================================================

class Option(str, Enum):
    """Recognized namespace options. The value is the keyword spelling."""

    # Names bound by let/let* are qualified too
    QUALIFY_LET_BINDINGS = ":let-vars"

    @classmethod
    def parse(cls, flag: Any) -> "Option":
        """
        Resolve a flag to an Option.

        Accepts an Option, its keyword spelling (":let-vars"), the keyword
        without its colon ("let-vars") or the member name.

        Raises:
            ConfigurationError: If the flag is not recognized
        """
        if isinstance(flag, cls):
            return flag
        if isinstance(flag, str):
            for option in cls:
                if flag in (option.value, option.value[1:], option.name):
                    return option
        raise ConfigurationError(f"Unrecognized namespace option: {flag!r}")


def parse_options(options: Union[None, str, Iterable[Any]]) -> frozenset:
    """Turn a flag or collection of flags into a frozenset of Option."""
    if options is None:
        return frozenset()
    if isinstance(options, str):
        options = [options]
    return frozenset(Option.parse(flag) for flag in options)


# Characters that cannot appear in a namespace prefix token
_FORBIDDEN_PREFIX_CHARS = frozenset(" \t\r\n()[]\"';`,")


def validate_namespace_name(name: Any) -> str:
    """
    Check that a namespace name can be used as an identifier prefix.

    Returns:
        The name as a plain str

    Raises:
        ConfigurationError: If the name is empty or not a single token
    """
    if not isinstance(name, str) or not name:
        raise ConfigurationError(f"Namespace name must be a non-empty symbol or string, got {name!r}")
    if any(c in _FORBIDDEN_PREFIX_CHARS for c in name):
        raise ConfigurationError(f"Namespace name is not a single identifier token: {name!r}")
    return str(name)


# ============================================================
# Rule kinds
# ============================================================

class RuleKind(str, Enum):
    """The rewrite rules a form (or symbol) can be handled by."""

    FUNCTION_APPLICATION = "function-application"
    VARIABLE_REFERENCE = "variable-reference"
    VARIABLE_DEFINITION = "variable-definition"
    LOCAL_BINDING = "local-binding"
    SEQUENTIAL_BINDING = "sequential-binding"
    CONDITIONAL_DISPATCH = "conditional-dispatch"
    QUOTING_FORM = "quoting-form"
    LAMBDA_FORM = "lambda-form"
    ALIAS_DEFINITION = "alias-definition"
    FUNCTION_DEFINITION = "function-definition"
    STRUCT_DEFINITION = "struct-definition"
    MACRO_EXPANSION = "macro-expansion"
    GENERIC_PASSTHROUGH = "generic-passthrough"


# ============================================================
# Definition Registry and Context
# ============================================================

class DefinitionRegistry:
    """
    Qualified names introduced during one pass.

    The host cannot see definitions made earlier in the same pass (they have
    not been evaluated yet), so the pass keeps its own record. Names are only
    ever added.
    """

    __slots__ = ("functions", "variables")

    def __init__(self):
        self.functions: set = set()
        self.variables: set = set()

    def add_function(self, qualified: str) -> None:
        if qualified not in self.functions:
            logger.debug("registered function %s", qualified)
        self.functions.add(qualified)

    def add_variable(self, qualified: str) -> None:
        if qualified not in self.variables:
            logger.debug("registered variable %s", qualified)
        self.variables.add(qualified)

    def __len__(self) -> int:
        return len(self.functions) + len(self.variables)

    def __repr__(self) -> str:
        return f"DefinitionRegistry(functions={sorted(self.functions)}, variables={sorted(self.variables)})"


class NamespaceContext:
    """
    Working state for one namespacing pass.

    A context is never modified to enter a scope. with_scope() returns a new
    context sharing the prefix, options, host, registry and trace, with the
    extra local bindings layered on top. The caller keeps using its own
    context once the scoped rewrite returns.

    Attributes:
        prefix: String prepended to qualified identifiers
        options: frozenset of Option
        host: Host answering definition queries and expanding macros
        registry: DefinitionRegistry shared by every context of the pass
        local_scope: Maps each shadowing name to the name it is rewritten to
        trace: Optional trace recorder (anything with a record() method)
    """

    __slots__ = ("prefix", "options", "host", "registry", "local_scope", "trace")

    def __init__(self, prefix: str, options: frozenset, host: "Host",
                 registry: Optional[DefinitionRegistry] = None,
                 local_scope: Optional[Dict[str, str]] = None,
                 trace: Any = None):
        self.prefix = prefix
        self.options = options
        self.host = host
        self.registry = registry if registry is not None else DefinitionRegistry()
        self.local_scope: Dict[str, str] = local_scope if local_scope is not None else {}
        self.trace = trace

    @property
    def let_vars(self) -> bool:
        """True if let-bound names are qualified."""
        return Option.QUALIFY_LET_BINDINGS in self.options

    def qualify(self, base: str) -> str:
        """Prefix a base name with the namespace."""
        return self.prefix + base

    def is_qualifiable_function(self, base: str) -> bool:
        """Check if prefix+base is a function or macro, known to the pass or the host."""
        qualified = self.qualify(base)
        return qualified in self.registry.functions or self.host.is_function_bound(qualified)

    def is_qualifiable_variable(self, base: str) -> bool:
        """Check if a variable reference to base should be qualified."""
        if base in self.local_scope or self_evaluating(base):
            return False
        qualified = self.qualify(base)
        return qualified in self.registry.variables or self.host.is_variable_bound(qualified)

    def with_scope(self, bindings: Dict[str, str]) -> "NamespaceContext":
        """Return a context where the given names shadow everything outside."""
        if not bindings:
            return self
        scope = dict(self.local_scope)
        scope.update(bindings)
        return NamespaceContext(self.prefix, self.options, self.host,
                                registry=self.registry, local_scope=scope,
                                trace=self.trace)

    def record(self, kind: RuleKind, before: ExprType, after: ExprType) -> None:
        """Record a rewrite step if tracing."""
        if self.trace is not None:
            self.trace.record(kind, before, after)

    def __repr__(self) -> str:
        return f"NamespaceContext({self.prefix!r}, locals={list(self.local_scope)})"


# ============================================================
# Rewrite dispatch
# ============================================================

def rewrite(form: ExprType, ctx: NamespaceContext) -> ExprType:
    """
    Rewrite a form so that namespaced definitions and references are qualified.

    Atoms:
        locally bound symbol   - replaced by its scope mapping (usually itself)
        namespaced variable    - qualified
        anything else          - unchanged

    Lists, by head symbol h:
        1. variable definers record their name before anything else
        2. prefix+h is a function or macro - qualify h (expanding macros)
        3. h has a bespoke rule in RULES - dispatch to it
        4. h is a macro in the host - expand one step and rewrite the result
        5. otherwise - keep h and rewrite each argument

    Args:
        form: The form to rewrite (never mutated)
        ctx: The pass context

    Returns:
        The rewritten form
    """
    if not compound(form):
        return convert_atom(form, ctx)
    if null(form):
        return []

    head = car(form)
    if not symbol(head):
        # ((lambda (x) ...) arg) and friends
        return [rewrite(sub, ctx) for sub in form]

    if head in VARIABLE_DEFINERS:
        register_variable_definition(form, ctx)

    if ctx.is_qualifiable_function(head):
        qualified = ctx.qualify(head)
        if ctx.host.is_macro(qualified):
            return expand_macro([qualified] + cdr(form), ctx)
        ctx.record(RuleKind.FUNCTION_APPLICATION, head, qualified)
        return [qualified] + [rewrite(arg, ctx) for arg in cdr(form)]

    rule = RULES.get(head)
    if rule is not None:
        return rule(form, ctx)

    if ctx.host.is_macro(head):
        return expand_macro(form, ctx)

    return [head] + [rewrite(arg, ctx) for arg in cdr(form)]


def convert_atom(form: ExprType, ctx: NamespaceContext) -> ExprType:
    """Rewrite an atom in variable position."""
    if not symbol(form):
        return form
    if form in ctx.local_scope:
        return ctx.local_scope[form]
    if ctx.is_qualifiable_variable(form):
        qualified = ctx.qualify(form)
        ctx.record(RuleKind.VARIABLE_REFERENCE, form, qualified)
        return qualified
    return form


def expand_macro(form: List, ctx: NamespaceContext) -> ExprType:
    """Expand a macro call one step through the host and rewrite the expansion."""
    expansion = ctx.host.expand_one_step(form)
    logger.debug("expanded macro call to %s", car(form))
    ctx.record(RuleKind.MACRO_EXPANSION, form, expansion)
    return rewrite(expansion, ctx)


# ============================================================
# Variable definers
# ============================================================

# Forms that introduce a new global variable
VARIABLE_DEFINERS = frozenset({
    "defvar", "defconst", "defcustom", "defvar-local",
    "defstruct", "cl-defstruct", "defvaralias",
})

# Definers whose name argument is an expression evaluated by the host
ALIAS_DEFINERS = frozenset({"defvaralias"})

STRUCT_DEFINERS = frozenset({"defstruct", "cl-defstruct"})


def defined_variable_name(form: List, ctx: NamespaceContext) -> str:
    """
    Return the base name a variable definer introduces.

    Aliasing definers evaluate their name expression through the host. The
    others take the name as written; struct definers also accept
    (name options...).

    Raises:
        MalformedFormError: If no symbol name can be found
        EvaluationError: If an alias name cannot be evaluated
    """
    head = car(form)
    if len(form) < 2:
        raise MalformedFormError(f"{head} needs a name", form)
    name = form[1]
    if head in ALIAS_DEFINERS:
        name = ctx.host.evaluate_static(name)
    elif head in STRUCT_DEFINERS and compound(name) and not null(name):
        name = car(name)
    if not symbol(name) or self_evaluating(name):
        raise MalformedFormError(f"{head} name must be a symbol", form)
    return name


def register_variable_definition(form: List, ctx: NamespaceContext) -> None:
    """Record the variable a definer form introduces."""
    name = defined_variable_name(form, ctx)
    qualified = ctx.qualify(name)
    ctx.registry.add_variable(qualified)
    ctx.record(RuleKind.VARIABLE_DEFINITION, name, qualified)


def convert_variable_definition(form: List, ctx: NamespaceContext) -> List:
    """
    (defvar NAME [VALUE [DOC]]), also defconst, defcustom, defvar-local and
    (defvaralias NAME-EXPR BASE-EXPR [DOC]).

    The name slot always becomes the qualified name, whatever a reference to
    NAME would resolve to at this point. An aliasing definer, whose name
    slot is evaluated, gets it quoted. The name was registered on dispatch
    entry.
    """
    head = car(form)
    qualified = ctx.qualify(defined_variable_name(form, ctx))
    name_slot = ["quote", qualified] if head in ALIAS_DEFINERS else qualified
    return [head, name_slot] + [rewrite(sub, ctx) for sub in form[2:]]


# ============================================================
# Bespoke rules
# ============================================================

LAMBDA_LIST_KEYWORDS = frozenset({"&optional", "&rest"})


def lambda_parameters(arglist: ExprType, form: List) -> List[str]:
    """
    Return the names an argument list binds.

    Raises:
        MalformedFormError: If the argument list is not a list of symbols
    """
    if null(arglist) or arglist == "nil":
        return []
    if not compound(arglist):
        raise MalformedFormError("argument list must be a list", form)
    params = []
    for param in arglist:
        if not symbol(param) or self_evaluating(param):
            raise MalformedFormError(f"argument must be a symbol, got {param!r}", form)
        if param not in LAMBDA_LIST_KEYWORDS:
            params.append(param)
    return params


def convert_function_body(arglist: ExprType, body: List, form: List,
                          ctx: NamespaceContext) -> List:
    """
    Rewrite an argument list and body with the parameters in scope.

    A leading docstring and declare forms are kept as they are. An
    interactive form keeps its head, but its arguments are rewritten in the
    enclosing scope (they run before the parameters are bound).

    Returns:
        [arglist, body...]
    """
    params = lambda_parameters(arglist, form)
    inner = ctx.with_scope({p: p for p in params})

    result = [arglist]
    remaining = list(body)
    if remaining and isinstance(remaining[0], Str):
        result.append(remaining.pop(0))
    while remaining and form_head(remaining[0]) in ("declare", "interactive"):
        declaration = remaining.pop(0)
        if car(declaration) == "interactive":
            result.append(["interactive"] + [rewrite(arg, ctx) for arg in cdr(declaration)])
        else:
            result.append(declaration)
    result.extend(rewrite(sub, inner) for sub in remaining)
    return result


def convert_lambda(form: List, ctx: NamespaceContext) -> List:
    """(lambda ARGS [DOC] [DECLARE] [INTERACTIVE] BODY...)"""
    if len(form) < 2:
        raise MalformedFormError("lambda needs an argument list", form)
    return [car(form)] + convert_function_body(form[1], form[2:], form, ctx)


def convert_defun(form: List, ctx: NamespaceContext) -> List:
    """
    (defun NAME ARGS BODY...), also defmacro and defsubst.

    The name is registered before the body is rewritten so recursive calls
    are qualified.
    """
    head = car(form)
    if len(form) < 3 or not symbol(form[1]):
        raise MalformedFormError(f"{head} needs a name and an argument list", form)
    name = form[1]
    qualified = ctx.qualify(name)
    ctx.registry.add_function(qualified)
    ctx.record(RuleKind.FUNCTION_DEFINITION, name, qualified)
    return [head, qualified] + convert_function_body(form[2], form[3:], form, ctx)


def convert_defalias(form: List, ctx: NamespaceContext) -> List:
    """
    (defalias NAME-EXPR DEFINITION [DOC])

    NAME-EXPR is evaluated by the host, so it must be statically evaluable,
    typically a quoted symbol.
    """
    head = car(form)
    if len(form) < 3:
        raise MalformedFormError(f"{head} needs a name and a definition", form)
    name = ctx.host.evaluate_static(form[1])
    if not symbol(name) or self_evaluating(name):
        raise MalformedFormError(f"{head} name must evaluate to a symbol, got {name!r}", form)
    qualified = ctx.qualify(name)
    ctx.registry.add_function(qualified)
    ctx.record(RuleKind.ALIAS_DEFINITION, name, qualified)
    return ([head, ["quote", qualified], rewrite(form[2], ctx)]
            + [rewrite(sub, ctx) for sub in form[3:]])


def convert_quote(form: List, ctx: NamespaceContext) -> List:
    """
    (quote X) and (function X)

    Only symbols and lambda forms are looked into; quoted data is left alone.
    A quoted symbol is qualified if it names a namespaced function, or (for
    quote only) a namespaced variable.
    """
    head = car(form)
    if len(form) != 2:
        raise MalformedFormError(f"{head} takes exactly one argument", form)
    payload = form[1]
    if symbol(payload):
        if ctx.is_qualifiable_function(payload) or (
                head == "quote" and ctx.is_qualifiable_variable(payload)):
            qualified = ctx.qualify(payload)
            ctx.record(RuleKind.QUOTING_FORM, payload, qualified)
            return [head, qualified]
        return [head, payload]
    if form_head(payload) == "lambda":
        return [head, convert_lambda(payload, ctx)]
    return [head, payload]


def binding_entries(bindings: ExprType, form: List) -> List[Tuple[ExprType, str, List]]:
    """
    Split a let binding list into (entry, name, value-forms) triples.

    Entries may be SYMBOL, (SYMBOL) or (SYMBOL VALUE).

    Raises:
        MalformedFormError: On any other shape
    """
    if null(bindings) or bindings == "nil":
        return []
    if not compound(bindings):
        raise MalformedFormError(f"{car(form)} bindings must be a list", form)
    entries = []
    for entry in bindings:
        if symbol(entry) and not self_evaluating(entry):
            entries.append((entry, entry, []))
        elif compound(entry) and 1 <= len(entry) <= 2 and symbol(entry[0]) \
                and not self_evaluating(entry[0]):
            entries.append((entry, entry[0], entry[1:]))
        else:
            raise MalformedFormError(f"bad {car(form)} binding {entry!r}", form)
    return entries


def _convert_binding_form(form: List, ctx: NamespaceContext, sequential: bool) -> List:
    head = car(form)
    if len(form) < 2:
        raise MalformedFormError(f"{head} needs a binding list", form)
    bindings = form[1]
    entries = binding_entries(bindings, form)

    inner = ctx
    parallel_scope: Dict[str, str] = {}
    new_bindings = []
    for entry, name, values in entries:
        # let: every value sees the outer scope; let*: it sees earlier bindings
        value_ctx = inner if sequential else ctx
        new_values = [rewrite(value, value_ctx) for value in values]
        bound = ctx.qualify(name) if ctx.let_vars else name
        new_bindings.append([bound] + new_values if compound(entry) else bound)
        if sequential:
            inner = inner.with_scope({name: bound})
        else:
            parallel_scope[name] = bound
    if not sequential:
        inner = ctx.with_scope(parallel_scope)

    ctx.record(RuleKind.SEQUENTIAL_BINDING if sequential else RuleKind.LOCAL_BINDING,
               bindings, new_bindings)
    if not compound(bindings):
        new_bindings = bindings
    return [head, new_bindings] + [rewrite(sub, inner) for sub in form[2:]]


def convert_let(form: List, ctx: NamespaceContext) -> List:
    """(let BINDINGS BODY...) with parallel binding."""
    return _convert_binding_form(form, ctx, sequential=False)


def convert_let_star(form: List, ctx: NamespaceContext) -> List:
    """(let* BINDINGS BODY...) with sequential binding."""
    return _convert_binding_form(form, ctx, sequential=True)


def convert_cond(form: List, ctx: NamespaceContext) -> List:
    """(cond (TEST BODY...)...) where an empty clause () never matches."""
    clauses = []
    for clause in cdr(form):
        if not compound(clause):
            raise MalformedFormError("cond clause must be a list", form)
        clauses.append([rewrite(part, ctx) for part in clause])
    return [car(form)] + clauses


def convert_struct(form: List, ctx: NamespaceContext) -> List:
    """
    (cl-defstruct NAME-OR-(NAME OPTIONS...) [DOC] SLOTS...)

    The struct name is qualified, slot names stay bare and slot default
    values are rewritten. The name itself was registered on dispatch entry.
    """
    head = car(form)
    name_spec = form[1]
    if compound(name_spec):
        new_spec = [ctx.qualify(car(name_spec))] + cdr(name_spec)
    else:
        new_spec = ctx.qualify(name_spec)

    result = [head, new_spec]
    slots = form[2:]
    if slots and isinstance(slots[0], Str):
        result.append(slots[0])
        slots = slots[1:]
    for slot in slots:
        if symbol(slot):
            result.append(slot)
        elif compound(slot) and slot and symbol(slot[0]):
            new_slot = [slot[0]]
            if len(slot) > 1:
                new_slot.append(rewrite(slot[1], ctx))
            # Slot options (:read-only t, :type ...) are data
            new_slot.extend(slot[2:])
            result.append(new_slot)
        else:
            raise MalformedFormError(f"bad {head} slot {slot!r}", form)
    return result


class RewriteRule:
    """A bespoke rewrite for one special form."""

    __slots__ = ("kind", "handler")

    def __init__(self, kind: RuleKind, handler: RuleHandler):
        self.kind = kind
        self.handler = handler

    def __call__(self, form: List, ctx: NamespaceContext) -> ExprType:
        return self.handler(form, ctx)

    def __repr__(self) -> str:
        return f"RewriteRule({self.kind.value}, {self.handler.__name__})"


# Special forms whose parts do not follow the plain call rule
RULES: Dict[str, RewriteRule] = {
    "let": RewriteRule(RuleKind.LOCAL_BINDING, convert_let),
    "let*": RewriteRule(RuleKind.SEQUENTIAL_BINDING, convert_let_star),
    "cond": RewriteRule(RuleKind.CONDITIONAL_DISPATCH, convert_cond),
    "quote": RewriteRule(RuleKind.QUOTING_FORM, convert_quote),
    "function": RewriteRule(RuleKind.QUOTING_FORM, convert_quote),
    "lambda": RewriteRule(RuleKind.LAMBDA_FORM, convert_lambda),
    "defvar": RewriteRule(RuleKind.VARIABLE_DEFINITION, convert_variable_definition),
    "defconst": RewriteRule(RuleKind.VARIABLE_DEFINITION, convert_variable_definition),
    "defcustom": RewriteRule(RuleKind.VARIABLE_DEFINITION, convert_variable_definition),
    "defvar-local": RewriteRule(RuleKind.VARIABLE_DEFINITION, convert_variable_definition),
    "defvaralias": RewriteRule(RuleKind.VARIABLE_DEFINITION, convert_variable_definition),
    "defalias": RewriteRule(RuleKind.ALIAS_DEFINITION, convert_defalias),
    "defun": RewriteRule(RuleKind.FUNCTION_DEFINITION, convert_defun),
    "defmacro": RewriteRule(RuleKind.FUNCTION_DEFINITION, convert_defun),
    "defsubst": RewriteRule(RuleKind.FUNCTION_DEFINITION, convert_defun),
    "defstruct": RewriteRule(RuleKind.STRUCT_DEFINITION, convert_struct),
    "cl-defstruct": RewriteRule(RuleKind.STRUCT_DEFINITION, convert_struct),
}


# ============================================================
# Driver
# ============================================================

def rewrite_forms(body: Iterable[ExprType], ctx: NamespaceContext) -> List[ExprType]:
    """
    Rewrite top-level forms in order with one shared context.

    A failure in any form aborts the whole pass; errors from this package
    that do not name a form get the top-level form attached.
    """
    result = []
    for form in body:
        try:
            result.append(rewrite(form, ctx))
        except NamespaceError as e:
            if e.form is None:
                e.form = form
            raise
    return result


def rewrite_namespace(name: str, options: Union[None, str, Iterable[Any]],
                      body: Iterable[ExprType], host: "Host",
                      trace: Any = None) -> List[ExprType]:
    """
    Qualify a block of top-level forms with a namespace prefix.

    Args:
        name: The namespace prefix, e.g. "foo-"
        options: Option flags (Option members or ":let-vars")
        body: Top-level forms, in evaluation order
        host: Host environment answering definition queries
        trace: Optional trace recorder

    Returns:
        The rewritten forms, to be evaluated in order in place of body

    Raises:
        ConfigurationError: For a bad name or option, before anything is rewritten
    """
    prefix = validate_namespace_name(name)
    flags = parse_options(options)
    body = list(body)
    logger.debug("namespacing %d forms with prefix %r", len(body), prefix)
    ctx = NamespaceContext(prefix, flags, host, trace=trace)
    return rewrite_forms(body, ctx)


def wrap_forms(forms: List[ExprType]) -> List:
    """Wrap rewritten forms for sequential evaluation: (progn FORMS...)."""
    return ["progn"] + list(forms)


def split_namespace_form(form: ExprType) -> Tuple[Any, List, List]:
    """
    Split (define-namespace NAME [KEYWORD...] BODY...) into its parts.

    Returns:
        (name, option keywords, body forms)

    Raises:
        MalformedFormError: If form is not a define-namespace form with a name
    """
    if form_head(form) != "define-namespace":
        raise MalformedFormError("expected a define-namespace form", form)
    if len(form) < 2:
        raise MalformedFormError("define-namespace needs a name", form)
    name = form[1]
    body = form[2:]
    options = []
    while body and keyword(body[0]):
        options.append(body[0])
        body = body[1:]
    return name, options, body


def expand_namespace_form(form: ExprType, host: "Host", trace: Any = None) -> List:
    """
    Expand (define-namespace NAME [KEYWORD...] BODY...) into (progn BODY'...).

    Raises:
        MalformedFormError: If form is not a define-namespace form with a name
        ConfigurationError: For an unknown keyword option
    """
    name, options, body = split_namespace_form(form)
    return wrap_forms(rewrite_namespace(name, options, body, host, trace=trace))
