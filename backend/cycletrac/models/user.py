from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func
from cycletrac.db import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), nullable=False, unique=True, index=True)

    # "pbkdf2_sha256$<iterations>$<salt hex>$<hash hex>"
    password_hash = Column(String, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
