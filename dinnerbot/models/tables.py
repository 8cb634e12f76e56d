"""
Relational layout of the bot's tables.

Runtime reads and writes go through Supabase (PostgREST); these declarations are
used to create the schema (`init_schema`) against DATABASE_URL.
"""
import logging

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    create_engine,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

logger = logging.getLogger(__name__)

Base = declarative_base()


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)  # messaging platform id
    invited = Column(Boolean, nullable=False, default=False)
    allergies = Column(Text, nullable=True)
    dislikes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    meals = relationship("Meal", back_populates="user", cascade="all, delete-orphan")
    sessions = relationship(
        "RecommendationSession", back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<User(id='{self.id}', invited={self.invited})>"


class Meal(Base):
    __tablename__ = "meals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    ate_date = Column(Date, nullable=False)
    dish = Column(String, nullable=False)
    tags = Column(Text, nullable=True)  # JSON-encoded list
    rating = Column(Integer, nullable=True)
    mood = Column(String, nullable=True)
    decided = Column(Boolean, nullable=False, default=False)

    user = relationship("User", back_populates="meals")

    __table_args__ = (Index("ix_meals_user_date", "user_id", "ate_date"),)

    def __repr__(self):
        return f"<Meal(user_id='{self.user_id}', dish='{self.dish}', rating={self.rating})>"


class RecommendationSession(Base):
    __tablename__ = "recommendation_sessions"

    id = Column(String, primary_key=True)  # session_<userId>_<epochMillis>
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    last_activity = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="sessions")
    dishes = relationship(
        "RecommendedDishRow", back_populates="session", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("ix_sessions_user_activity", "user_id", "last_activity"),)


class RecommendedDishRow(Base):
    __tablename__ = "recommended_dishes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        String,
        ForeignKey("recommendation_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    dish_name = Column(String, nullable=False)
    genre = Column(String, nullable=False, default="unknown")
    main_ingredient = Column(String, nullable=False, default="unknown")
    cooking_method = Column(String, nullable=False, default="unknown")
    recommendation_order = Column(Integer, nullable=True)
    user_feedback = Column(Text, nullable=True)
    recommended_at = Column(DateTime(timezone=True), server_default=func.now())
    selected = Column(Boolean, nullable=False, default=False)

    session = relationship("RecommendationSession", back_populates="dishes")

    __table_args__ = (
        Index("ix_recommended_dishes_session_time", "session_id", "recommended_at"),
    )


def init_schema(database_url: str, echo: bool = False):
    """Create all tables (idempotent). Returns the engine."""
    engine = create_engine(database_url, echo=echo, future=True)
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ensured: %s", ", ".join(sorted(Base.metadata.tables)))
    return engine
