"""
Candidate ORM Model

A nominated restaurant. Owned by exactly one session; only created or
removed while that session is nominating.
"""
from sqlalchemy import Column, Integer, String, Text, ForeignKey, Index

from foodfight.orm.base import BaseModel


class Candidate(BaseModel):
    __tablename__ = "candidates"

    session_id = Column(
        Integer,
        ForeignKey("food_fight_sessions.id"),
        nullable=False,
        index=True
    )
    name = Column(String(200), nullable=False)
    category = Column(String(100), nullable=False, default="")
    external_link = Column(Text, nullable=True)
    address = Column(Text, nullable=True)
    external_place_id = Column(String(255), nullable=True)

    __table_args__ = (
        Index("idx_candidate_name", "name"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "external_link": self.external_link,
            "address": self.address,
            "external_place_id": self.external_place_id,
        }
