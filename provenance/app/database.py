from sqlmodel import SQLModel, create_engine, Session
import os
from dotenv import load_dotenv

load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./provenance.db")
DATABASE_ECHO = os.getenv("DATABASE_ECHO", "false").lower() == "true"

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, echo=DATABASE_ECHO, connect_args=connect_args)

def init_db(target_engine=None):
    from provenance.app import models  # noqa: F401 registers the tables
    SQLModel.metadata.create_all(target_engine or engine)

def get_session():
    with Session(engine) as session:
        yield session
