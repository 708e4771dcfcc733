from __future__ import annotations

from sqlalchemy import JSON, Column, DateTime, Integer, String, func

from .db import Base


class SecurityLog(Base):
    __tablename__ = "security_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    action = Column(String(64), nullable=False)
    email = Column(String(255))
    role = Column(String(16))
    ip = Column(String(64))
    payload = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
