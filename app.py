import logging

from rollsync.actors import ActorRegistry
from rollsync.app import create_app
from rollsync.config import load_settings
from rollsync.db import make_session_factory
from rollsync.logging_config import setup_logging
from rollsync.sync_manager import build_engine
from rollsync.table import JournalGameTable

setup_logging()
logger = logging.getLogger(__name__)

settings = load_settings()
session_factory = make_session_factory(settings.database_url)
actors = ActorRegistry.from_file(settings.actors_file) if settings.actors_file else ActorRegistry()

engine = build_engine(settings, actors, JournalGameTable(session_factory))
application = create_app(engine, session_factory)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(application, host="0.0.0.0", port=8000)
