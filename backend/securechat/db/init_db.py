# securechat/db/init_db.py
from sqlalchemy.engine import Engine

from securechat.db.base import Base

# Import the ORM models so SQLAlchemy registers their tables
from securechat.models import document  # noqa: F401

def init_db(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)
