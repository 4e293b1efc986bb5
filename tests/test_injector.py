import asyncio
import unittest

from scopedi import (
    APP,
    REQUEST,
    Builder,
    DependencyInjector,
    ScopeTooNarrow,
)


class Mailer:
    def __init__(self):
        self.sent = []


class Session:
    def __init__(self):
        self.closed = False


def build_context():
    builder = Builder()
    builder.add_definition('mailer', build=lambda ctx: Mailer())
    builder.add_definition('session', build=lambda ctx: Session(), scope=REQUEST,
                           close=lambda s: setattr(s, 'closed', True))
    return builder.build()


class TestDependencyInjector(unittest.TestCase):
    """Test the inject decorator and current context tracking"""

    def setUp(self):
        self.context = build_context()
        self.injector = DependencyInjector(self.context)

    def test_current_context_defaults_to_wrapped_context(self):
        self.assertIs(self.injector.current_context(), self.context)
        self.assertIs(self.injector.context, self.context)

    def test_activate(self):
        scope = self.injector.create_scope()

        with self.injector.activate(scope) as active:
            self.assertIs(active, scope)
            self.assertIs(self.injector.current_context(), scope)

        self.assertIs(self.injector.current_context(), self.context)

    def test_request_scope(self):
        """Test request_scope opens, activates and deletes a sub-context"""
        with self.injector.request_scope() as scope:
            self.assertEqual(scope.scope, REQUEST)
            self.assertIs(self.injector.current_context(), scope)
            session = scope.get('session')

        self.assertTrue(scope.is_deleted())
        self.assertTrue(session.closed)
        self.assertIs(self.injector.current_context(), self.context)

    def test_inject_sync(self):
        @self.injector.inject
        def send(message: str, mailer, session):
            mailer.sent.append(message)
            return mailer, session

        with self.injector.request_scope() as scope:
            mailer, session = send("hello")

        self.assertEqual(mailer.sent, ["hello"])
        self.assertIs(mailer, self.context.get('mailer'))
        self.assertTrue(session.closed)
        self.assertTrue(scope.is_deleted())

    def test_inject_async(self):
        @self.injector.inject
        async def send(message: str, mailer):
            mailer.sent.append(message)
            return mailer

        async def run():
            with self.injector.request_scope():
                return await send("hello")

        mailer = asyncio.run(run())
        self.assertEqual(mailer.sent, ["hello"])

    def test_inject_hides_injected_parameters(self):
        import inspect

        @self.injector.inject
        def handler(user_id: int, mailer, session, verbose: bool = False):
            return user_id

        self.assertEqual(list(inspect.signature(handler).parameters), ['user_id', 'verbose'])

    def test_inject_explicit_arguments_win(self):
        replacement = Mailer()

        @self.injector.inject
        def send(mailer):
            return mailer

        self.assertIs(send(mailer=replacement), replacement)

    def test_inject_outside_request_scope(self):
        """Test request objects can not be injected from the app context"""
        @self.injector.inject
        def handler(session):
            return session

        with self.assertRaises(ScopeTooNarrow):
            handler()

    def test_inject_uses_default_when_resolution_fails(self):
        @self.injector.inject
        def handler(mailer, session=None):
            return mailer, session

        mailer, session = handler()
        self.assertIsInstance(mailer, Mailer)
        self.assertIsNone(session)

    def test_strict_rejects_unknown_annotated_parameter(self):
        strict = DependencyInjector(self.context, strict=True)

        with self.assertRaises(ValueError):
            @strict.inject
            def handler(mailer, cache: dict):
                return mailer

    def test_strict_resolution_failure(self):
        strict = DependencyInjector(self.context, strict=True)

        @strict.inject
        def handler(session=None):
            return session

        with self.assertRaises(ValueError) as context:
            handler()

        self.assertIsInstance(context.exception.__cause__, ScopeTooNarrow)

    def test_injectors_are_isolated(self):
        other = DependencyInjector(build_context())

        with self.injector.request_scope():
            self.assertIs(other.current_context(), other.context)
            self.assertEqual(other.current_context().scope, APP)


if __name__ == '__main__':
    unittest.main()
