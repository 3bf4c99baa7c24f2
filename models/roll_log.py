from sqlalchemy import Column, Integer, String, JSON, DateTime
from sqlalchemy.sql import func
from rollsync.db import Base


class RollLog(Base):
    """A finalized roll posted to the game table."""
    __tablename__ = "roll_logs"

    id = Column(Integer, primary_key=True, index=True)
    actor = Column(String, index=True)
    roll_type = Column(String, nullable=True)       # "save", "check", "initiative", ...
    roll_mode = Column(String, nullable=True)       # "remote", "manual", "normal"
    formula = Column(String, nullable=True)
    total = Column(Integer, nullable=True)
    flavor = Column(String, nullable=True)
    dice = Column(JSON, nullable=True)              # [[face values], ...] per die term
    remote_roll_id = Column(String, nullable=True, index=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now())
