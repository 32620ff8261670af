# securechat/models/document.py
from sqlalchemy import JSON, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from securechat.db.base import Base


class DocumentRow(Base):
    """One JSON document of SqlStore. `seq` keeps insertion order for tie-breaks."""
    __tablename__ = "documents"
    __table_args__ = (UniqueConstraint("collection", "doc_id", name="uq_documents_collection_doc_id"),)

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    collection: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    doc_id: Mapped[str] = mapped_column(String(255), nullable=False)

    data: Mapped[dict] = mapped_column(JSON, nullable=False)
