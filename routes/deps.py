# routes/deps.py

from fastapi import Request

from rollsync.db import session_scope
from rollsync.sync_manager import SyncEngine


def get_engine(request: Request) -> SyncEngine:
    return request.app.state.engine


def get_db(request: Request):
    session_factory = request.app.state.session_factory
    if session_factory is None:
        yield None
        return
    yield from session_scope(session_factory)
