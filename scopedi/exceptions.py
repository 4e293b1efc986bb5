"""
Exceptions raised by scopedi.

Registration errors are raised from the Builder while definitions are
collected. Resolution errors are raised from Context.safe_get / Context.fill
and describe why an object could not be obtained. CloseFailed is never
raised: Context.delete returns one per failing close function, and a build
finishing after deletion chains it to the ContextDeleted it raises.
"""

from typing import Optional


class ScopeDIError(Exception):
    """Base class for every error reported by the container."""


class RegistrationError(ScopeDIError):
    pass


class DuplicateName(RegistrationError):
    def __init__(self, name: str):
        super().__init__(f"A definition named '{name}' is already registered")
        self.name = name


class UnknownScope(RegistrationError):
    def __init__(self, scope: str, scopes: tuple = ()):
        super().__init__(f"Scope '{scope}' is not one of {list(scopes)}")
        self.scope = scope


class InvalidScopes(RegistrationError):
    pass


class ResolutionError(ScopeDIError):
    pass


class UndefinedObject(ResolutionError):
    def __init__(self, name: str):
        super().__init__(f"No definition registered for '{name}'")
        self.name = name


class ScopeTooNarrow(ResolutionError):
    def __init__(self, name: str, definition_scope: str, context_scope: str):
        super().__init__(
            f"'{name}' belongs to the '{definition_scope}' scope and can not be "
            f"resolved from a '{context_scope}' context"
        )
        self.name = name
        self.definition_scope = definition_scope
        self.context_scope = context_scope


class NoParentContext(ResolutionError):
    def __init__(self, name: str, context_scope: str):
        super().__init__(
            f"'{name}' needs a wider context but the '{context_scope}' context has no parent"
        )
        self.name = name


class BuildFailed(ResolutionError):
    """
    The build function of a definition raised.

    The original exception is kept on `cause` and chained as __cause__.
    """

    def __init__(self, name: str, cause: BaseException):
        super().__init__(f"Could not build '{name}': {cause}")
        self.name = name
        self.cause = cause


class CyclicDependency(ResolutionError):
    def __init__(self, name: str):
        super().__init__(f"Cyclic dependency detected while building '{name}'")
        self.name = name


class ContextDeleted(ResolutionError):
    def __init__(self, context_scope: str):
        super().__init__(f"The '{context_scope}' context has been deleted")


class ScopeExhausted(ResolutionError):
    def __init__(self, context_scope: str):
        super().__init__(f"'{context_scope}' is the narrowest scope, no sub-context can be created")


class TypeMismatch(ResolutionError):
    def __init__(self, name: str, expected: type, actual: type):
        super().__init__(
            f"'{name}' resolved to {actual.__name__}, which can not be assigned to {expected.__name__}"
        )
        self.name = name
        self.expected = expected
        self.actual = actual


class CloseFailed(ScopeDIError):
    def __init__(self, name: str, cause: BaseException):
        super().__init__(f"Error closing '{name}': {cause}")
        self.name = name
        self.cause = cause


class ResolutionAborted(RuntimeError):
    """Raised by Context.get. The typed ScopeDIError is chained as __cause__."""

    def __init__(self, name: str, error: Optional[ScopeDIError] = None):
        super().__init__(f"Could not get '{name}': {error}")
        self.name = name
