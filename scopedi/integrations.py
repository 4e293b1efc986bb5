"""
Per-request sub-contexts for web frameworks and an `inject` decorator that
fills function parameters from the active context.
"""

import inspect
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from functools import lru_cache, wraps
from typing import Callable, Iterator, Optional

from .exceptions import ScopeDIError
from .services import Context

logger = logging.getLogger(__name__)


@lru_cache(maxsize=None)
def get_signature(fn):
    return inspect.signature(fn)


class DependencyInjector:
    """
    Decorator and middleware helper for injecting objects into function
    parameters, matched by parameter name against the registered definitions.

    The active request context is tracked per thread / task, so concurrent
    requests each see their own sub-context.
    """

    def __init__(self, context: Context, strict: bool = False):
        self._context = context
        self._strict = strict
        self._current: ContextVar[Optional[Context]] = ContextVar(
            f"scopedi_current_context_{id(self)}", default=None
        )

    @property
    def context(self) -> Context:
        return self._context

    def create_scope(self) -> Context:
        """Create a sub-context of the wrapped context."""
        return self._context.sub_context()

    def current_context(self) -> Context:
        """The context bound by `activate`, or the wrapped context."""
        context = self._current.get()
        return context if context is not None else self._context

    @contextmanager
    def activate(self, context: Context) -> Iterator[Context]:
        """Bind `context` as the current context for the enclosed block."""
        token = self._current.set(context)
        try:
            yield context
        finally:
            self._current.reset(token)

    @contextmanager
    def request_scope(self) -> Iterator[Context]:
        """Open a sub-context, make it current, delete it on exit."""
        with self.create_scope() as scope, self.activate(scope):
            yield scope

    def inject(self, fn: Callable) -> Callable:
        """
        Decorator for functions (sync or async). Parameters named after a
        definition are resolved from the current context and removed from the
        visible signature. In strict mode every annotated parameter must name
        a definition.
        """
        sig = get_signature(fn)
        is_async = inspect.iscoroutinefunction(fn)
        definitions = self._context.definitions()

        new_params = []
        injectable_params: dict[str, inspect.Parameter] = {}

        for name, param in sig.parameters.items():
            if name in definitions:
                injectable_params[name] = param
                continue

            if self._strict and param.annotation != inspect.Parameter.empty:
                raise ValueError(
                    f"Failed to resolve dependency for parameter '{name}': "
                    f"no definition named '{name}' is registered"
                )
            new_params.append(param)

        new_sig = sig.replace(parameters=new_params)

        def resolve_kwargs(kwargs: dict) -> dict:
            context = self.current_context()
            for name, param in injectable_params.items():
                if name in kwargs:
                    continue
                try:
                    kwargs[name] = context.safe_get(name)
                except ScopeDIError as e:
                    if self._strict:
                        raise ValueError(f"Failed to resolve dependency '{name}': {e}") from e
                    if param.default is inspect.Parameter.empty:
                        raise
                    logger.debug(f"Skipping DI for '{name}', using its default: {e}")
            return kwargs

        if is_async:
            @wraps(fn)
            async def async_wrapper(*args, **kwargs):
                return await fn(*args, **resolve_kwargs(kwargs))

            async_wrapper.__signature__ = new_sig
            return async_wrapper

        @wraps(fn)
        def sync_wrapper(*args, **kwargs):
            return fn(*args, **resolve_kwargs(kwargs))

        sync_wrapper.__signature__ = new_sig
        return sync_wrapper

    def setup_fastapi(self, app):
        """
        Install a FastAPI middleware opening a sub-context per request,
        attached to request.state.scope and deleted once the response is built.
        """
        from fastapi import Request

        @app.middleware("http")
        async def scopedi_middleware(request: Request, call_next):
            with self.request_scope() as scope:
                request.state.scope = scope
                return await call_next(request)

    def setup_flask(self, app):
        """
        Install Flask hooks managing a sub-context per request via flask.g.
        """
        from flask import g

        @app.before_request
        def open_request_scope():
            g.scope = self.create_scope()
            g.scope_token = self._current.set(g.scope)

        @app.teardown_request
        def close_request_scope(exception=None):
            token = g.pop('scope_token', None)
            if token is not None:
                self._current.reset(token)
            scope = g.pop('scope', None)
            if scope is not None:
                scope.delete()
