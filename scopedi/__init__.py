"""
scopedi – A scoped object lifecycle container for Python
"""

from .exceptions import (
    ScopeDIError,
    RegistrationError,
    ResolutionError,
    DuplicateName,
    UnknownScope,
    InvalidScopes,
    UndefinedObject,
    ScopeTooNarrow,
    NoParentContext,
    BuildFailed,
    CyclicDependency,
    ContextDeleted,
    ScopeExhausted,
    TypeMismatch,
    CloseFailed,
    ResolutionAborted
)
from .integrations import DependencyInjector
from .services import (
    APP,
    REQUEST,
    SUBREQUEST,
    DEFAULT_SCOPES,
    Builder,
    Context,
    Definition,
    DefinitionRegistry,
    Ref
)

__all__ = [
    'APP',
    'REQUEST',
    'SUBREQUEST',
    'DEFAULT_SCOPES',
    'Builder',
    'Context',
    'Definition',
    'DefinitionRegistry',
    'Ref',
    'DependencyInjector',
    'ScopeDIError',
    'RegistrationError',
    'ResolutionError',
    'DuplicateName',
    'UnknownScope',
    'InvalidScopes',
    'UndefinedObject',
    'ScopeTooNarrow',
    'NoParentContext',
    'BuildFailed',
    'CyclicDependency',
    'ContextDeleted',
    'ScopeExhausted',
    'TypeMismatch',
    'CloseFailed',
    'ResolutionAborted'
]
