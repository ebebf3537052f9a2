from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()
engine = None
SessionLocal = None

def init_db(database_url: str):
    global engine, SessionLocal
    if engine is None:
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        engine = create_engine(database_url, connect_args=connect_args)
        SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        # create tables
        from roster_service import models
        Base.metadata.create_all(bind=engine)
    return SessionLocal

def reset_db():
    """Drop the cached engine so the next init_db() binds a fresh one."""
    global engine, SessionLocal
    if engine is not None:
        engine.dispose()
    engine = None
    SessionLocal = None
