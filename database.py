"""
=============================================================================
DATABASE.PY — Database Setup
=============================================================================
Builds the SQLAlchemy engine and the session factory.

In DEVELOPMENT: SQLite (a local .db file, or in-memory for tests).
In PRODUCTION: PostgreSQL through psycopg (v3).

There is no module-level engine: create_app() calls create_db_engine() with
the URL from Settings and stores the session factory on app.state. The
get_db dependency reads it from there, so tests can hand the app their own
in-memory database.
"""

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from sqlalchemy.pool import StaticPool

# ─────────────────────────────────────────────────────────────────────────────
# BASE (parent class of every model)
# ─────────────────────────────────────────────────────────────────────────────

Base = declarative_base()


# ─────────────────────────────────────────────────────────────────────────────
# ENGINE + SESSIONS
# ─────────────────────────────────────────────────────────────────────────────

def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    SQLite refuses cross-thread access by default and FastAPI runs sync
    endpoints in a threadpool, hence check_same_thread=False.
    An in-memory SQLite database lives inside ONE connection, so it is
    pinned with StaticPool.
    """
    engine_args = {}
    if database_url.startswith("sqlite"):
        engine_args["connect_args"] = {"check_same_thread": False}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            engine_args["poolclass"] = StaticPool

    return create_engine(database_url, echo=echo, **engine_args)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine):
    """Creates every table that does not exist yet"""
    # models must be imported so their tables are registered on Base.metadata
    import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db(request: Request):
    """
    FastAPI dependency: one session per request, always closed.

      @app.get("/something")
      def endpoint(db: Session = Depends(get_db)):
          ...
    """
    db: Session = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
