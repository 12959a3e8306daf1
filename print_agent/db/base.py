import os

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker

from print_agent.db.models import Base


def _ensure_sqlite_dir(database_url: str):
    db_path = make_url(database_url).database
    if db_path and db_path != ":memory:":
        parent = os.path.dirname(os.path.abspath(db_path))
        os.makedirs(parent, exist_ok=True)


def create_session_factory(database_url: str):
    connect_args = {}
    if database_url.startswith("sqlite"):
        _ensure_sqlite_dir(database_url)
        # stores are written from the worker thread and the event loop
        connect_args["check_same_thread"] = False
    engine = create_engine(database_url, future=True, connect_args=connect_args)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False)
