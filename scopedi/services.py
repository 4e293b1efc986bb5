"""
scopedi – Scoped object lifecycle container

Provides:
- Named definitions (build / close functions) tagged with a lifetime scope
- A scope ladder, from the widest scope to the narrowest one
- Lazy, at-most-once construction of each object in the context owning its scope
- Cascading teardown of a context and every sub-context created from it
"""

import logging
import threading
import weakref
from types import MappingProxyType
from typing import Any, Callable, Generic, Mapping, Optional, TypeVar, get_origin

from .exceptions import (
    BuildFailed,
    CloseFailed,
    ContextDeleted,
    CyclicDependency,
    DuplicateName,
    InvalidScopes,
    NoParentContext,
    ResolutionAborted,
    ScopeDIError,
    ScopeExhausted,
    ScopeTooNarrow,
    TypeMismatch,
    UndefinedObject,
    UnknownScope,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')

APP = 'app'
REQUEST = 'request'
SUBREQUEST = 'subrequest'

DEFAULT_SCOPES = (APP, REQUEST, SUBREQUEST)


def validate_scopes(scopes: tuple) -> None:
    """
    A scope ladder must hold at least one scope and no scope twice.
    """
    if not scopes:
        raise InvalidScopes("At least one scope is required")
    seen = set()
    for scope in scopes:
        if not isinstance(scope, str) or not scope:
            raise InvalidScopes(f"Scope identifiers must be non-empty strings, got {scope!r}")
        if scope in seen:
            raise InvalidScopes(f"Scope '{scope}' appears more than once")
        seen.add(scope)


class Definition:
    """
    The recipe for one named object.

    Attributes:
        name:   Unique name the object is resolved by.
        scope:  Scope identifier owning the object.
        build:  Callable(context) → object. Receives the context resolving it.
        close:  Optional callable(object) invoked when the owning context is deleted.
    """
    __slots__ = ('name', 'scope', 'build', 'close')

    def __init__(
        self,
        name: str,
        build: Callable[['Context'], Any],
        scope: str = APP,
        close: Optional[Callable[[Any], None]] = None
    ):
        if not isinstance(name, str) or not name:
            raise ValueError("Definition name must be a non-empty string")
        if not callable(build):
            raise ValueError(f"Build function of '{name}' is not callable")
        if close is not None and not callable(close):
            raise ValueError(f"Close function of '{name}' is not callable")

        self.name = name
        self.scope = scope
        self.build = build
        self.close = close

    def __repr__(self):
        return f"Definition(name={self.name!r}, scope={self.scope!r})"


class DefinitionRegistry:
    """
    Frozen snapshot of a builder: the scope ladder and the definitions.
    Shared, read-only, by every context of one tree.
    """
    __slots__ = ('scopes', 'definitions', '_indices')

    def __init__(self, scopes: tuple, definitions: Mapping[str, Definition]):
        self.scopes = tuple(scopes)
        self.definitions = MappingProxyType(dict(definitions))
        self._indices = {scope: index for index, scope in enumerate(self.scopes)}

    def scope_index(self, scope: str) -> int:
        return self._indices[scope]


class Builder:
    """
    Collects definitions before building the root Context.
    """

    __slots__ = ('_scopes', '_definitions')

    def __init__(self, scopes: Optional[tuple] = None):
        self._scopes = tuple(scopes) if scopes is not None else DEFAULT_SCOPES
        self._definitions: dict[str, Definition] = {}

    @property
    def scopes(self) -> tuple:
        return self._scopes

    def add(self, *definitions: Definition) -> None:
        """Register pre-made Definition records."""
        for definition in definitions:
            self._register(definition)

    def add_definition(
        self,
        name: str,
        build: Callable[['Context'], Any],
        scope: Optional[str] = None,
        close: Optional[Callable[[Any], None]] = None
    ) -> Definition:
        """
        Register a build (and optional close) function under `name`.
        Without a scope the object lives in the widest scope.
        """
        definition = Definition(
            name=name,
            build=build,
            scope=scope if scope is not None else self._widest_scope(),
            close=close
        )
        self._register(definition)
        return definition

    def set(self, name: str, value: Any) -> Definition:
        """Register a ready-made value in the widest scope."""
        return self.add_definition(name, build=lambda ctx: value)

    def is_defined(self, name: str) -> bool:
        return name in self._definitions

    def definitions(self) -> Mapping[str, Definition]:
        return MappingProxyType(dict(self._definitions))

    def build(self) -> 'Context':
        """
        Freeze the registrations and return the root context (widest scope).
        Definitions added after this call are not seen by the returned tree.
        """
        validate_scopes(self._scopes)
        registry = DefinitionRegistry(self._scopes, self._definitions)
        logger.debug(f"Building root context with {len(registry.definitions)} definitions over {list(self._scopes)}")
        return Context(registry)

    def _widest_scope(self) -> str:
        if not self._scopes:
            raise InvalidScopes("At least one scope is required")
        return self._scopes[0]

    def _register(self, definition: Definition) -> None:
        if definition.name in self._definitions:
            raise DuplicateName(definition.name)
        if definition.scope not in self._scopes:
            raise UnknownScope(definition.scope, self._scopes)

        self._definitions[definition.name] = definition
        logger.debug(f"Registered '{definition.name}' in the '{definition.scope}' scope")


class Ref(Generic[T]):
    """
    Typed destination for Context.fill.

    `value` is only assigned when the resolved object is an instance of `type`.
    """
    __slots__ = ('type', 'value')

    def __init__(self, _type: type, value: Optional[T] = None):
        if not isinstance(_type, type) or get_origin(_type) is not None:
            raise TypeError(f"Ref needs a plain class to check values against, got {_type!r}")
        self.type = _type
        self.value = value

    def __repr__(self):
        return f"Ref({self.type.__name__}, value={self.value!r})"


class _Slot:
    """
    Cache entry for one name of one context: building until `ready`.
    `done` is set once the build either published a value or gave up.
    """
    __slots__ = ('owner', 'ready', 'value', 'close', 'done')

    def __init__(self, owner: int):
        self.owner = owner
        self.ready = False
        self.value = None
        self.close = None
        self.done = threading.Event()


class _WaitGraph:
    """
    Records which thread waits for which slot so that a thread about to
    block on a build that (transitively) waits for it gets an error instead.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._waiting: dict[int, _Slot] = {}

    def wait(self, slot: _Slot, name: str) -> None:
        me = threading.get_ident()

        with self._lock:
            owner = None if slot.done.is_set() else slot.owner
            seen = set()
            while owner is not None and owner not in seen:
                if owner == me:
                    raise CyclicDependency(name)
                seen.add(owner)
                blocking = self._waiting.get(owner)
                owner = blocking.owner if blocking is not None and not blocking.done.is_set() else None
            self._waiting[me] = slot

        try:
            slot.done.wait()
        finally:
            with self._lock:
                self._waiting.pop(me, None)


_wait_graph = _WaitGraph()


class Context:
    """
    One live instance of a scope.

    Resolves names by walking up to the context owning the definition's scope,
    builds each object at most once per owning context and closes everything it
    built when deleted, after deleting its sub-contexts.

    Key methods:
      - get(name)          → object, raises ResolutionAborted on any error
      - safe_get(name)     → object, raises the typed ScopeDIError
      - fill(name, ref)    → assigns ref.value after a type check
      - sub_context()      → new Context one scope narrower
      - delete()           → list of CloseFailed
    """

    __slots__ = (
        '_registry', '_scope_index', '_parent_ref', '_children', '_slots',
        '_built', '_lock', '_deleting', '_deleter', '_deleted', '__weakref__'
    )

    def __init__(self, registry: DefinitionRegistry, scope_index: int = 0, parent: Optional['Context'] = None):
        self._registry = registry
        self._scope_index = scope_index
        self._parent_ref = weakref.ref(parent) if parent is not None else None
        # insertion ordered, used as an ordered set
        self._children: dict['Context', None] = {}
        self._slots: dict[str, _Slot] = {}
        self._built: list[str] = []
        self._lock = threading.Lock()
        self._deleting = False
        self._deleter: Optional[int] = None
        self._deleted = threading.Event()

    def __enter__(self) -> 'Context':
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.delete()

    def __repr__(self):
        return (
            f"<Context scope={self.scope!r} objects={len(self._built)} "
            f"children={len(self._children)} deleted={self._deleting}>"
        )

    @property
    def scope(self) -> str:
        return self._registry.scopes[self._scope_index]

    @property
    def scopes(self) -> tuple:
        return self._registry.scopes

    def parent_scopes(self) -> list[str]:
        return list(self._registry.scopes[:self._scope_index])

    def sub_scopes(self) -> list[str]:
        return list(self._registry.scopes[self._scope_index + 1:])

    def parent(self) -> Optional['Context']:
        if self._parent_ref is None:
            return None
        return self._parent_ref()

    def definitions(self) -> Mapping[str, Definition]:
        return self._registry.definitions

    def is_defined(self, name: str) -> bool:
        return name in self._registry.definitions

    def is_deleted(self) -> bool:
        return self._deleting

    def get(self, name: str) -> Any:
        """
        Resolve `name`, turning any resolution error into ResolutionAborted.
        Use safe_get to handle the typed errors.
        """
        try:
            return self.safe_get(name)
        except ScopeDIError as e:
            logger.error(f"Could not get '{name}' from the '{self.scope}' context: {e}")
            raise ResolutionAborted(name, e) from e

    def safe_get(self, name: str) -> Any:
        """
        Resolve `name` in the context owning its scope, building it on first use.
        """
        if self._deleting:
            raise ContextDeleted(self.scope)

        definition = self._registry.definitions.get(name)
        if definition is None:
            raise UndefinedObject(name)

        target = self._registry.scope_index(definition.scope)

        if target > self._scope_index:
            raise ScopeTooNarrow(name, definition.scope, self.scope)

        if target < self._scope_index:
            parent = self.parent()
            if parent is None:
                raise NoParentContext(name, self.scope)
            return parent.safe_get(name)

        return self._resolve_local(definition)

    def fill(self, name: str, ref: Ref) -> None:
        """
        Resolve `name` into `ref.value`. The value must be an instance of
        `ref.type`, otherwise TypeMismatch is raised and `ref` is left untouched.
        """
        value = self.safe_get(name)
        if not isinstance(value, ref.type):
            raise TypeMismatch(name, ref.type, type(value))
        ref.value = value

    def sub_context(self) -> 'Context':
        """Create a context for the next narrower scope."""
        with self._lock:
            if self._deleting:
                raise ContextDeleted(self.scope)
            if self._scope_index + 1 >= len(self._registry.scopes):
                raise ScopeExhausted(self.scope)

            child = Context(self._registry, self._scope_index + 1, parent=self)
            self._children[child] = None

        logger.debug(f"Created '{child.scope}' context under '{self.scope}'")
        return child

    def delete(self) -> list[CloseFailed]:
        """
        Delete the sub-contexts, then close every object built in this context.

        Only the first call has an effect. A call made while another thread
        is deleting the context blocks until that deletion is complete, so a
        parent never closes its objects before its sub-contexts are closed.

        Close failures are logged and returned, one CloseFailed per failing
        close function, sub-contexts included; they never stop the teardown.
        An object whose build completes after deletion started is closed by
        the building thread, which receives ContextDeleted chained to the
        CloseFailed if that close fails.
        """
        with self._lock:
            if self._deleting:
                wait = self._deleter != threading.get_ident()
            else:
                wait = None
                self._deleting = True
                self._deleter = threading.get_ident()
                children = list(self._children)

        if wait is not None:
            if wait:
                self._deleted.wait()
            return []

        try:
            return self._delete(children)
        finally:
            self._deleted.set()

    def _delete(self, children: list['Context']) -> list[CloseFailed]:
        errors: list[CloseFailed] = []
        for child in children:
            errors.extend(child.delete())

        with self._lock:
            entries = [(name, self._slots[name]) for name in reversed(self._built)]
            self._slots.clear()
            self._built.clear()

        for name, slot in entries:
            if slot.close is None:
                continue
            error = self._close(name, slot.close, slot.value)
            if error is not None:
                errors.append(error)

        parent = self.parent()
        if parent is not None:
            parent._detach(self)

        logger.debug(f"Deleted '{self.scope}' context ({len(entries)} objects, {len(errors)} close errors)")
        return errors

    def _detach(self, child: 'Context') -> None:
        with self._lock:
            self._children.pop(child, None)

    def _resolve_local(self, definition: Definition) -> Any:
        name = definition.name
        me = threading.get_ident()

        while True:
            with self._lock:
                if self._deleting:
                    raise ContextDeleted(self.scope)

                slot = self._slots.get(name)
                if slot is None:
                    slot = _Slot(owner=me)
                    self._slots[name] = slot
                    break

                if slot.ready:
                    return slot.value

                if slot.owner == me:
                    raise CyclicDependency(name)

            # someone else is building it, the slot is either ready or gone afterwards
            _wait_graph.wait(slot, name)

        return self._build(definition, slot)

    def _build(self, definition: Definition, slot: _Slot) -> Any:
        name = definition.name

        try:
            value = definition.build(self)
        except Exception as e:
            self._abandon(name, slot)
            logger.warning(f"Failed to build '{name}' in the '{self.scope}' context: {e}")
            raise BuildFailed(name, e) from e
        except BaseException:
            self._abandon(name, slot)
            raise

        with self._lock:
            published = not self._deleting
            if published:
                slot.value = value
                slot.close = definition.close
                slot.ready = True
                self._built.append(name)
        slot.done.set()

        if not published:
            # the context was deleted while building, nobody owns the object anymore
            error = None
            if definition.close is not None:
                error = self._close(name, definition.close, value)
            raise ContextDeleted(self.scope) from error

        logger.debug(f"Built '{name}' in the '{self.scope}' context")
        return value

    def _abandon(self, name: str, slot: _Slot) -> None:
        with self._lock:
            if self._slots.get(name) is slot:
                del self._slots[name]
        slot.done.set()

    def _close(self, name: str, close: Callable[[Any], None], value: Any) -> Optional[CloseFailed]:
        try:
            close(value)
        except Exception as e:
            logger.warning(f"Error closing '{name}' in the '{self.scope}' context: {e}")
            return CloseFailed(name, e)
        return None
