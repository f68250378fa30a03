import logging
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from library_api.models import Base

logger = logging.getLogger(__name__)


class Storage:
    """Owns the engine and session factory for one database.

    Built explicitly and handed to the app (``app.state.storage``) so tests can
    run against their own in-memory database.
    """

    def __init__(self, database_url: str):
        self.database_url = database_url
        engine_options = {}
        if database_url.startswith("sqlite"):
            engine_options["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                engine_options["poolclass"] = StaticPool
        self.engine = create_engine(database_url, **engine_options)
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, bind=self.engine
        )

    def create_schema(self):
        Base.metadata.create_all(bind=self.engine)

    def drop_schema(self):
        Base.metadata.drop_all(bind=self.engine)

    def session(self) -> Session:
        return self.SessionLocal()

    def dispose(self):
        logger.info("Closing database connection")
        self.engine.dispose()
