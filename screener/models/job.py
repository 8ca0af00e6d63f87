from sqlalchemy import Column, Integer, String, Text, Boolean, JSON, DateTime
from sqlalchemy.sql import func
from screener.database import Base

class Job(Base):
    """
    Job posting as written by the external job CRUD service.
    The screening core only reads the requirement columns.
    """
    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, index=True, nullable=False)
    description = Column(Text, default="")
    required_skills = Column(JSON, default=list)
    nice_to_have_skills = Column(JSON, default=list)
    experience_required_years = Column(Integer, default=0)
    strengths_expected = Column(JSON, default=list)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
