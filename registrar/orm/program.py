"""
registrar/orm/program.py
Academic program (e.g. BSIT, BSCS). Courses and students hang off a program.
"""
from sqlalchemy import Column, String
from sqlalchemy.orm import relationship

from registrar.orm.base import TimestampedModel


class Program(TimestampedModel):
    __tablename__ = "programs"

    code = Column(String(20), nullable=False, unique=True, index=True)
    name = Column(String(150), nullable=False)

    courses = relationship("Course", back_populates="program")

    def __repr__(self):
        return f"<Program(id={self.id}, code='{self.code}')>"
