"""
Legacy unified user store - Database Model

Source table of the backfill. Every legacy user, whatever its role, sits in
one table; fields beyond the common ones are kept as-is in ``payload``.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import Column, String, DateTime, JSON

from database import Base


class LegacyUserDB(Base):
    __tablename__ = "legacy_users"

    id = Column(String(64), primary_key=True)
    email = Column(String(255), index=True)
    password = Column(String(255))  # bcrypt hash or plain text
    role = Column(String(50))
    name = Column(String(200))
    first_name = Column(String(100))
    last_name = Column(String(100))
    payload = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role,
            "name": self.name,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "payload": self.payload or {},
        }
