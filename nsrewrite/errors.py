"""
Exceptions raised while namespacing a block of forms.

Every error aborts the whole pass. Errors that know which form triggered
them carry it in the ``form`` attribute and mention it in the message.
"""

from typing import Any, Optional


class NamespaceError(Exception):
    """Base class for all nsrewrite errors."""

    def __init__(self, message: str, form: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.form = form

    def __str__(self) -> str:
        if self.form is None:
            return self.message
        # Imported here: the printer lives in engine, which imports this module
        from .engine import format_sexpr
        return f"{self.message} in {format_sexpr(self.form)}"


class ConfigurationError(NamespaceError, ValueError):
    """An unrecognized option flag or an unusable namespace name."""


class EvaluationError(NamespaceError):
    """An expression could not be evaluated statically by the host."""


class HostExpansionError(NamespaceError):
    """Macro expansion was requested for a head that is not a macro."""


class MalformedFormError(NamespaceError, ValueError):
    """A special form does not have the shape its rewrite rule expects."""


class ReadError(NamespaceError, ValueError):
    """Source text could not be read into forms."""
