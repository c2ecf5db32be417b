from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from promptopt.config import settings
from promptopt.models.base import Base

# Only use check_same_thread for SQLite databases
connect_args = {}
if settings.DATABASE_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(
    settings.DATABASE_URL, connect_args=connect_args
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

def init_db(bind=None):
    # Import all models here so they are registered with Base
    # promptopt.models imports all models in its __init__.py
    import promptopt.models
    Base.metadata.create_all(bind=bind or engine)
