# test_fastapi.py
import uuid

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from scopedi import Builder, REQUEST, DependencyInjector


class Database:
    def __init__(self):
        self.id = str(uuid.uuid4())

    def get_value(self):
        return "fastapi ok"


class RequestSession:
    def __init__(self, database: Database):
        self.id = str(uuid.uuid4())
        self.database = database
        self.closed = False

    def close(self):
        self.closed = True


def setup_app(sessions: list):
    builder = Builder()
    builder.add_definition('database', build=lambda ctx: Database())

    def build_session(ctx):
        session = RequestSession(ctx.get('database'))
        sessions.append(session)
        return session

    builder.add_definition('session', build=build_session, scope=REQUEST, close=lambda s: s.close())

    app = FastAPI()
    injector = DependencyInjector(builder.build())
    injector.setup_fastapi(app)
    return app, injector


def test_fastapi_request_state_scope():
    """Test the middleware exposes the request sub-context on request.state"""
    sessions = []
    app, injector = setup_app(sessions)

    @app.get("/manual")
    async def manual(request: Request):
        scope = request.state.scope
        session = scope.get('session')
        return {
            "scope": scope.scope,
            "value": session.database.get_value(),
            "same": session is scope.get('session')
        }

    client = TestClient(app)
    response = client.get("/manual")

    assert response.status_code == 200
    assert response.json() == {"scope": "request", "value": "fastapi ok", "same": True}
    assert len(sessions) == 1
    assert sessions[0].closed


def test_fastapi_injected_endpoint():
    """Test injected endpoints get one session per request and a shared database"""
    sessions = []
    app, injector = setup_app(sessions)

    @app.get("/injected")
    @injector.inject
    async def injected(database, session):
        return {"database": database.id, "session": session.id}

    client = TestClient(app)
    first = client.get("/injected").json()
    second = client.get("/injected").json()

    assert first["database"] == second["database"]
    assert first["session"] != second["session"]
    assert len(sessions) == 2
    assert all(session.closed for session in sessions)


def test_fastapi_query_parameters_are_kept():
    """Test FastAPI only sees the parameters left after injection"""
    app, injector = setup_app([])

    @app.get("/greet")
    @injector.inject
    async def greet(name: str, database):
        return {"greeting": f"hello {name}", "value": database.get_value()}

    client = TestClient(app)
    response = client.get("/greet", params={"name": "world"})

    assert response.status_code == 200
    assert response.json() == {"greeting": "hello world", "value": "fastapi ok"}
