import os
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from .models import Base

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "sqlite+pysqlite:///./stay-service.db",
)


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    eng = create_engine(DATABASE_URL, pool_pre_ping=True)
    Base.metadata.create_all(eng)
    return eng


def session(engine: Engine) -> Session:
    # Results are read after commit (response building, event payloads), so
    # keep attributes loaded instead of expiring them.
    return Session(engine, expire_on_commit=False)
