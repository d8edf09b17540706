from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine, SQLModel
import os


def build_engine(database_url: str, echo: bool = False) -> Engine:
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection, otherwise every session sees an empty database
        return create_engine(database_url, echo=echo, connect_args={"check_same_thread": False},
                             poolclass=StaticPool)

    connect_args = {}
    if database_url.startswith("sqlite:///"):
        # Timer callbacks run on the scheduler's worker threads
        connect_args["check_same_thread"] = False
        directory = os.path.dirname(database_url[len("sqlite:///"):])
        if directory:
            os.makedirs(directory, exist_ok=True)
    return create_engine(database_url, echo=echo, connect_args=connect_args)


def create_db_and_tables(engine: Engine):
    SQLModel.metadata.create_all(engine)
