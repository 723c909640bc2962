# fulfillment/data/database.py
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from fulfillment.utils.settings import DATABASE_URL, STORE_TIMEOUT_SECONDS


def build_engine(url: str = DATABASE_URL):
    if url.startswith("sqlite"):
        # one shared in-process connection, used by local runs and tests
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_timeout=STORE_TIMEOUT_SECONDS,
        connect_args={
            "connect_timeout": STORE_TIMEOUT_SECONDS,
            "options": f"-c statement_timeout={STORE_TIMEOUT_SECONDS * 1000}",
        },
    )


engine = build_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    # registers every table on Base.metadata before create_all
    import fulfillment.data.models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
