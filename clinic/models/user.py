"""User model definitions."""

from sqlalchemy import Column, Integer, String
from clinic.database import Base


class User(Base):
    """Represents a portal user provisioned by the identity provider."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    role = Column(String)  # patient/doctor/admin
    first_name = Column(String)
    last_name = Column(String)
