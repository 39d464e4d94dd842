from sqlmodel import SQLModel, create_engine
from roundengine.config import settings
import os

# data directory for the default SQLite file
if settings.db_dsn.startswith("sqlite"):
    os.makedirs("data", exist_ok=True)

engine = create_engine(
    settings.db_dsn,
    echo=False,
    connect_args={"check_same_thread": False} if settings.db_dsn.startswith("sqlite") else {},
)


def init_db(bind=None):
    # import models so SQLModel registers the tables
    from roundengine.db import models  # noqa: F401
    SQLModel.metadata.create_all(bind or engine)
