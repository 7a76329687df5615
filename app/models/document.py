"""
Document model backing the SQL document store
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, JSON

from app.core.db import Base

class Document(Base):
    __tablename__ = "documents"

    # Full slash-separated path, e.g. "events/abc/WaitlistedEntrants/uid1"
    path = Column(String(512), primary_key=True)
    collection = Column(String(512), nullable=False, index=True)
    doc_id = Column(String(255), nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # optimistic locking: UPDATE/DELETE carry "WHERE version = :seen"
    __mapper_args__ = {"version_id_col": version}
