from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from chatnotes.core.config import settings

DATABASE_URL = settings.DATABASE_URL
if not DATABASE_URL:
    raise ValueError("DATABASE_URL is not set in .env")

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    DATABASE_URL,
    pool_pre_ping=True,
    echo=settings.DEBUG,
    future=True,
    connect_args=connect_args
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)

Base = declarative_base()


def get_db():
    """
    Creates a DB session per request.
    Closes it once the request is done.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
