"""
Host environments for the namespace rewriter.

The rewriter never evaluates code itself. Whenever it needs to know whether
a name is defined, to expand a macro, or to compute the name a defalias
introduces, it asks a Host.

Host is the interface. Environment is an in-memory host: it keeps tables
of defined functions, variables and macros, records the definitional effect
of forms passed to load(), and evaluates a small static subset of the
language (enough for quoted names, backquote templates and defmacro bodies).

Macros are Python callables receiving the unevaluated argument forms and
returning the expansion:

    def when(cond, *body):
        return ["if", cond, ["progn", *body]]

    env = Environment(macros={"when": when})
    env.expand_one_step(["when", "x", "y"])  # => ["if", "x", ["progn", "y"]]
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Optional

from .errors import EvaluationError, HostExpansionError, MalformedFormError
from .rewriter import (
    ExprType, Str, car, cdr, compound, null, symbol, self_evaluating, form_head,
    LAMBDA_LIST_KEYWORDS,
)

logger = logging.getLogger(__name__)

# Macro expander: receives the argument forms, returns the expansion
MacroFn = Callable[..., ExprType]
MacroTable = Dict[str, MacroFn]


class Host(ABC):
    """What the rewriter needs from the surrounding evaluator."""

    @abstractmethod
    def is_function_bound(self, name: str) -> bool:
        """True if name is a defined function or macro."""

    @abstractmethod
    def is_variable_bound(self, name: str) -> bool:
        """True if name is a defined variable."""

    @abstractmethod
    def is_macro(self, name: str) -> bool:
        """True if name is a defined macro."""

    @abstractmethod
    def expand_one_step(self, form: List) -> ExprType:
        """
        Expand a macro call once.

        Raises:
            HostExpansionError: If the head of form is not a macro
            MalformedFormError: If the macro does not accept the arguments
        """

    @abstractmethod
    def evaluate_static(self, expr: ExprType) -> Any:
        """
        Evaluate an expression in the current host state.

        Raises:
            EvaluationError: If expr cannot be evaluated
        """


# ============================================================
# Static evaluation
# ============================================================

def _truthy(value: Any) -> bool:
    return not null(value)


def _cons(item: Any, lst: Any) -> List:
    if not compound(lst):
        raise EvaluationError(f"cons: dotted pairs are not supported, got {lst!r}")
    return [item] + lst


def _append(*lists: Any) -> List:
    result = []
    for lst in lists:
        if not compound(lst):
            raise EvaluationError(f"append: argument must be a list, got {lst!r}")
        result.extend(lst)
    return result


def _car(lst: Any) -> Any:
    if not compound(lst):
        raise EvaluationError(f"car: argument must be a list, got {lst!r}")
    return lst[0] if lst else []


def _cdr(lst: Any) -> List:
    if not compound(lst):
        raise EvaluationError(f"cdr: argument must be a list, got {lst!r}")
    return lst[1:]


def _nth(n: Any, lst: Any) -> Any:
    if not isinstance(n, int) or not compound(lst):
        raise EvaluationError(f"nth: bad arguments {n!r}, {lst!r}")
    return lst[n] if 0 <= n < len(lst) else []


def _concat(*strings: Any) -> Str:
    for s in strings:
        if not isinstance(s, Str):
            raise EvaluationError(f"concat: argument must be a string, got {s!r}")
    return Str("".join(strings))


def _intern(name: Any) -> str:
    if not isinstance(name, Str):
        raise EvaluationError(f"intern: argument must be a string, got {name!r}")
    return str(name)


def _symbol_name(sym: Any) -> Str:
    if null(sym):
        return Str("nil")
    if not symbol(sym):
        raise EvaluationError(f"symbol-name: argument must be a symbol, got {sym!r}")
    return Str(sym)


# Functions the static evaluator knows how to apply
STATIC_FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "list": lambda *items: list(items),
    "cons": _cons,
    "append": _append,
    "car": _car,
    "cdr": _cdr,
    "nth": _nth,
    "concat": _concat,
    "intern": _intern,
    "symbol-name": _symbol_name,
}


def evaluate(expr: ExprType, bindings: Optional[Dict[str, Any]] = None) -> Any:
    """
    Evaluate an expression without side effects.

    Supports self-evaluating atoms, symbols bound in bindings, quote,
    function, backquote templates, if, progn and STATIC_FUNCTIONS.

    Args:
        expr: The expression to evaluate
        bindings: Values of the symbols in scope (e.g. macro parameters)

    Returns:
        The value, as a form (nil evaluates to [])

    Raises:
        EvaluationError: For anything outside the supported subset
    """
    bindings = bindings if bindings is not None else {}

    if not compound(expr):
        if not symbol(expr):
            return expr
        if expr == "nil":
            return []
        if self_evaluating(expr):
            return expr
        if expr in bindings:
            return bindings[expr]
        raise EvaluationError(f"value of {expr} is not statically known", expr)

    if null(expr):
        return []

    head = car(expr)
    if head in ("quote", "function"):
        if len(expr) != 2:
            raise EvaluationError(f"{head} takes exactly one argument", expr)
        return expr[1]
    if head == "`":
        if len(expr) != 2:
            raise EvaluationError("backquote takes exactly one argument", expr)
        return fill_template(expr[1], bindings)
    if head == "if":
        if len(expr) < 3:
            raise EvaluationError("if needs a condition and a then-form", expr)
        if _truthy(evaluate(expr[1], bindings)):
            return evaluate(expr[2], bindings)
        return evaluate_body(expr[3:], bindings)
    if head == "progn":
        return evaluate_body(cdr(expr), bindings)
    if symbol(head) and head in STATIC_FUNCTIONS:
        args = [evaluate(arg, bindings) for arg in cdr(expr)]
        try:
            return STATIC_FUNCTIONS[head](*args)
        except TypeError as e:
            raise EvaluationError(f"{head}: {e}", expr) from e
        except EvaluationError as e:
            if e.form is None:
                e.form = expr
            raise

    raise EvaluationError(f"cannot evaluate {head!r} statically", expr)


def evaluate_body(body: List, bindings: Dict[str, Any]) -> Any:
    """Evaluate forms in order, returning the last value (nil if none)."""
    value: Any = []
    for form in body:
        value = evaluate(form, bindings)
    return value


def fill_template(template: ExprType, bindings: Dict[str, Any]) -> Any:
    """
    Instantiate a backquote template.

    (, X) is replaced by the value of X; (,@ X) splices the list value of X
    into the enclosing list. Everything else is copied.
    """
    if not compound(template) or null(template):
        return template
    if template[0] == "," and len(template) == 2:
        return evaluate(template[1], bindings)

    result = []
    for item in template:
        if form_head(item) == ",@" and len(item) == 2:
            spliced = evaluate(item[1], bindings)
            if not compound(spliced):
                raise EvaluationError(f"cannot splice non-list {spliced!r}", item)
            result.extend(spliced)
        else:
            result.append(fill_template(item, bindings))
    return result


# ============================================================
# Macros defined by defmacro
# ============================================================

class LispMacro:
    """
    A macro from a (defmacro NAME ARGS BODY...) form.

    Expansion binds the argument forms to the parameters and evaluates the
    body with the static evaluator.
    """

    def __init__(self, name: str, arglist: ExprType, body: List):
        self.name = name
        self.required: List[str] = []
        self.optional: List[str] = []
        self.rest: Optional[str] = None
        self._parse_arglist(arglist)

        body = list(body)
        if len(body) > 1 and isinstance(body[0], Str):
            body = body[1:]
        while body and form_head(body[0]) == "declare":
            body = body[1:]
        self.body = body

    def _parse_arglist(self, arglist: ExprType) -> None:
        if null(arglist) or arglist == "nil":
            return
        if not compound(arglist):
            raise MalformedFormError(f"defmacro {self.name}: argument list must be a list", arglist)
        mode = "required"
        for param in arglist:
            if not symbol(param):
                raise MalformedFormError(f"defmacro {self.name}: bad parameter {param!r}", arglist)
            if param in LAMBDA_LIST_KEYWORDS:
                mode = param
            elif mode == "required":
                self.required.append(param)
            elif mode == "&optional":
                self.optional.append(param)
            elif self.rest is None:
                self.rest = param
            else:
                raise MalformedFormError(f"defmacro {self.name}: only one &rest parameter allowed", arglist)

    def bind(self, args: Iterable[ExprType]) -> Dict[str, Any]:
        """Bind argument forms to parameter names."""
        args = list(args)
        max_args = len(self.required) + len(self.optional)
        if len(args) < len(self.required) or (self.rest is None and len(args) > max_args):
            raise EvaluationError(f"wrong number of arguments to macro {self.name}: {len(args)}")
        bindings: Dict[str, Any] = {}
        for param, arg in zip(self.required + self.optional, args):
            bindings[param] = arg
        for param in self.optional[max(0, len(args) - len(self.required)):]:
            bindings[param] = []
        if self.rest is not None:
            bindings[self.rest] = args[max_args:]
        return bindings

    def __call__(self, *args: ExprType) -> ExprType:
        return evaluate_body(self.body, self.bind(args))

    def __repr__(self) -> str:
        return f"LispMacro({self.name})"


# ============================================================
# Standard macros
# ============================================================

def backquote_expansion(template: ExprType) -> ExprType:
    """
    Turn a backquote template into list-building code.

    `(a ,b ,@c) => (append (list 'a) (list b) c)
    """
    if symbol(template) and not self_evaluating(template):
        return ["quote", template]
    if not compound(template) or null(template):
        return template
    if template[0] == "," and len(template) == 2:
        return template[1]
    parts = []
    for item in template:
        if form_head(item) == ",@" and len(item) == 2:
            parts.append(item[1])
        else:
            parts.append(["list", backquote_expansion(item)])
    return ["append"] + parts


def _macro_when(cond, *body):
    return ["if", cond, ["progn"] + list(body)]


def _macro_unless(cond, *body):
    return ["if", cond, "nil"] + list(body)


def _macro_push(newelt, place):
    setter = "setq" if symbol(place) else "setf"
    return [setter, place, ["cons", newelt, place]]


def _loop_spec(name: str, spec: ExprType) -> List:
    if not compound(spec) or not 2 <= len(spec) <= 3 or not symbol(spec[0]):
        raise MalformedFormError(f"{name} spec must be (VAR EXPR [RESULT])", spec)
    return list(spec)


def _macro_dolist(spec, *body):
    spec = _loop_spec("dolist", spec)
    var, lst, result = spec[0], spec[1], spec[2:]
    tail = "--dolist-tail--"
    loop = ["while", tail,
            ["let", [[var, ["car", tail]]]] + list(body) + [["setq", tail, ["cdr", tail]]]]
    return ["let", [[tail, lst]], loop] + result


def _macro_dotimes(spec, *body):
    spec = _loop_spec("dotimes", spec)
    var, count, result = spec[0], spec[1], spec[2:]
    limit = "--dotimes-limit--"
    loop = ["while", ["<", var, limit]] + list(body) + [["setq", var, ["1+", var]]]
    return ["let*", [[limit, count], [var, 0]], loop] + result


STANDARD_MACROS: MacroTable = {
    "when": _macro_when,
    "unless": _macro_unless,
    "push": _macro_push,
    "dolist": _macro_dolist,
    "dotimes": _macro_dotimes,
    "`": backquote_expansion,
}

NO_MACROS: MacroTable = {}


# ============================================================
# In-memory environment
# ============================================================

VARIABLE_FORMS = frozenset({"defvar", "defconst", "defcustom", "defvar-local"})
FUNCTION_FORMS = frozenset({"defun", "defsubst"})
STRUCT_FORMS = frozenset({"defstruct", "cl-defstruct"})


class Environment(Host):
    """
    An in-memory host.

    Example:
        env = Environment(functions=["foo-helper"], variables=["foo-count"])
        env.is_function_bound("foo-helper")   # => True

        env.load(["defmacro", "foo-twice", ["x"], ["`", ["progn", [",", "x"], [",", "x"]]]])
        env.expand_one_step(["foo-twice", ["beep"]])
        # => ["progn", ["beep"], ["beep"]]
    """

    def __init__(self, macros: Optional[MacroTable] = None,
                 functions: Iterable[str] = (), variables: Iterable[str] = ()):
        """
        Initialize an Environment.

        Args:
            macros: Prelude macros. Default: STANDARD_MACROS.
            functions: Names of functions already defined
            variables: Names of variables already defined
        """
        self._prelude: MacroTable = dict(STANDARD_MACROS if macros is None else macros)
        self._macros: MacroTable = {}
        self._functions: set = set(functions)
        self._variables: set = set(variables)

    def with_prelude(self, macros: MacroTable) -> 'Environment':
        """Replace the prelude macros, keeping loaded definitions. Returns self."""
        self._prelude = dict(macros)
        return self

    def define_function(self, name: str) -> 'Environment':
        self._functions.add(name)
        return self

    def define_variable(self, name: str) -> 'Environment':
        self._variables.add(name)
        return self

    def define_macro(self, name: str, expander: MacroFn) -> 'Environment':
        self._macros[name] = expander
        return self

    # Host interface

    def is_function_bound(self, name: str) -> bool:
        return name in self._functions or self.is_macro(name)

    def is_variable_bound(self, name: str) -> bool:
        return name in self._variables

    def is_macro(self, name: str) -> bool:
        return name in self._macros or name in self._prelude

    def expand_one_step(self, form: List) -> ExprType:
        head = form_head(form)
        if head is None or not self.is_macro(head):
            raise HostExpansionError(f"{head!r} is not a macro", form)
        expander = self._macros[head] if head in self._macros else self._prelude[head]
        try:
            return expander(*cdr(form))
        except TypeError as e:
            raise MalformedFormError(f"bad arguments to macro {head}: {e}", form) from e

    def evaluate_static(self, expr: ExprType) -> Any:
        return evaluate(expr)

    # Definitions

    def load(self, form: ExprType) -> 'Environment':
        """
        Record the definitions a top-level form makes when evaluated.

        Forms without a definitional effect are ignored.
        """
        head = form_head(form)
        if head is None:
            return self
        if head == "progn":
            for sub in cdr(form):
                self.load(sub)
        elif head in FUNCTION_FORMS and len(form) > 1 and symbol(form[1]):
            self.define_function(form[1])
        elif head == "defmacro":
            if len(form) < 3 or not symbol(form[1]):
                raise MalformedFormError("defmacro needs a name and an argument list", form)
            self.define_macro(form[1], LispMacro(form[1], form[2], form[3:]))
        elif head in VARIABLE_FORMS and len(form) > 1 and symbol(form[1]):
            self.define_variable(form[1])
        elif head in STRUCT_FORMS and len(form) > 1:
            name = car(form[1]) if compound(form[1]) and form[1] else form[1]
            if symbol(name):
                self.define_variable(name)
        elif head == "defalias" and len(form) > 1:
            self.define_function(self._evaluated_name(form))
        elif head == "defvaralias" and len(form) > 1:
            self.define_variable(self._evaluated_name(form))
        else:
            return self
        logger.debug("loaded %s form", head)
        return self

    def _evaluated_name(self, form: List) -> str:
        name = self.evaluate_static(form[1])
        if not symbol(name):
            raise MalformedFormError(f"{car(form)} name must evaluate to a symbol", form)
        return name

    def load_all(self, forms: Iterable[ExprType]) -> 'Environment':
        for form in forms:
            self.load(form)
        return self

    def functions(self) -> List[str]:
        """Defined function names (macros excluded), sorted."""
        return sorted(self._functions)

    def variables(self) -> List[str]:
        return sorted(self._variables)

    def macros(self) -> List[str]:
        """Loaded macro names (prelude excluded), sorted."""
        return sorted(self._macros)

    def clear(self) -> 'Environment':
        """Forget loaded definitions. The prelude is kept."""
        self._macros = {}
        self._functions = set()
        self._variables = set()
        return self

    def copy(self) -> 'Environment':
        new_env = Environment(macros=self._prelude)
        new_env._macros = dict(self._macros)
        new_env._functions = set(self._functions)
        new_env._variables = set(self._variables)
        return new_env

    def __repr__(self) -> str:
        return (f"Environment({len(self._functions)} functions, "
                f"{len(self._variables)} variables, {len(self._macros)} macros)")
