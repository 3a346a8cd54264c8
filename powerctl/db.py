# powerctl/db.py
import time

from sqlalchemy import Column, Float, String, Text, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


class StateRecordRow(Base):
    __tablename__ = "state_records"

    key = Column(String, primary_key=True)
    document = Column(Text, nullable=False)  # json encoded flat key/value map
    updated_at = Column(Float, default=lambda: time.time())


def make_session_factory(url: str):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    kwargs = {}
    if url in ("sqlite://", "sqlite:///:memory:"):
        # one shared connection, otherwise every session sees an empty database
        kwargs["poolclass"] = StaticPool
    engine = create_engine(url, pool_pre_ping=True, connect_args=connect_args, **kwargs)
    Base.metadata.create_all(engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
