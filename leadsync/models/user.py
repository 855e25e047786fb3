"""
User model — agency staff; sellers are matched against Trello card members.
"""
from sqlalchemy import Column, Integer, Text, Boolean, DateTime
from sqlalchemy.sql import func

from leadsync.database import Base


SELLER_ROLES = ('SELLER', 'ADMIN', 'SUPER_ADMIN')


class User(Base):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True, autoincrement=True)
    agency_id = Column(Text, nullable=False, index=True)
    name = Column(Text, nullable=False)
    email = Column(Text, nullable=True)
    role = Column(Text, nullable=False, default='SELLER')
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
