from __future__ import annotations
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base


DEFAULT_DATABASE_URL = "sqlite:///./ifrench.db"

Base = declarative_base()


def make_engine(database_url: str | None = None) -> Engine:
	url = database_url or DEFAULT_DATABASE_URL
	connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
	return create_engine(url, connect_args=connect_args, future=True)


def make_session_factory(engine: Engine) -> sessionmaker:
	return sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)


def create_tables(engine: Engine) -> None:
	# Register the mapped classes before create_all
	from . import models  # noqa: F401

	Base.metadata.create_all(bind=engine)
