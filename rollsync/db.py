# rollsync/db.py
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session

Base = declarative_base()


def make_session_factory(database_url: str = "sqlite:///rollsync.db"):
    """Create the engine and a session factory, creating tables on first use."""
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    engine = create_engine(database_url, connect_args=connect_args)
    init_db(engine)
    return sessionmaker(bind=engine)


def init_db(engine):
    from models.roll_log import RollLog  # noqa: F401

    Base.metadata.create_all(bind=engine)


def session_scope(session_factory):
    db: Session = session_factory()
    try:
        yield db
    finally:
        db.close()
