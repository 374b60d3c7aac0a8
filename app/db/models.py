"""SQLAlchemy models for the progression record store."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, Float, Boolean, ForeignKey, CheckConstraint, Index
from sqlalchemy.orm import relationship
from app.db.database import Base


class User(Base):
    """Anonymous user and the scalar part of their progression record."""
    __tablename__ = "users"

    id = Column(Text, primary_key=True)  # "pgr_" + UUID from cookie
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_active_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Incremented by every consolidated write (optimistic lock)
    version = Column(Integer, nullable=False, default=0)

    level = Column(Integer, nullable=False, default=1)
    experience = Column(Integer, nullable=False, default=0)
    streak_days = Column(Integer, nullable=False, default=0)
    last_streak_update = Column(DateTime, nullable=True)
    gacha_tickets = Column(Integer, nullable=False, default=0)

    quizzes_completed = Column(Integer, nullable=False, default=0)
    perfect_scores = Column(Integer, nullable=False, default=0)
    failed_quizzes = Column(Integer, nullable=False, default=0)
    debate_wins = Column(Integer, nullable=False, default=0)
    debate_win_streak = Column(Integer, nullable=False, default=0)
    total_time_spent = Column(Integer, nullable=False, default=0)  # seconds

    pulls_since_rare = Column(Integer, nullable=False, default=0)
    difficulty_multiplier = Column(Float, nullable=False, default=1.0)

    __table_args__ = (
        CheckConstraint("level >= 1", name="ck_users_level"),
        CheckConstraint("experience >= 0", name="ck_users_experience"),
        CheckConstraint("gacha_tickets >= 0", name="ck_users_tickets"),
        CheckConstraint("streak_days >= 0", name="ck_users_streak"),
    )

    # Relationships
    completed_lessons = relationship("CompletedLesson", back_populates="user", cascade="all, delete-orphan")
    achievements = relationship("UserAchievement", back_populates="user", cascade="all, delete-orphan")
    milestones = relationship("UserMilestone", back_populates="user", cascade="all, delete-orphan")
    collection = relationship("CollectionEntry", back_populates="user", cascade="all, delete-orphan")
    pulls = relationship("PullHistory", back_populates="user", cascade="all, delete-orphan")
    feature_unlocks = relationship("FeatureUnlock", back_populates="user", cascade="all, delete-orphan")
    quiz_results = relationship("QuizResult", back_populates="user", cascade="all, delete-orphan")
    level_ups = relationship("LevelUp", back_populates="user", cascade="all, delete-orphan")


class CompletedLesson(Base):
    """A lesson the user has finished. Append-only."""
    __tablename__ = "completed_lessons"

    user_id = Column(Text, ForeignKey("users.id"), primary_key=True)
    lesson_id = Column(Text, primary_key=True)
    completed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="completed_lessons")


class UserAchievement(Base):
    """Per-user achievement progress. Frozen once completed."""
    __tablename__ = "user_achievements"

    user_id = Column(Text, ForeignKey("users.id"), primary_key=True)
    achievement_id = Column(Text, primary_key=True)
    current_value = Column(Float, nullable=False, default=0.0)
    target_value = Column(Float, nullable=False, default=1.0)
    completed = Column(Boolean, nullable=False, default=False)
    unlocked_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="achievements")


class UserMilestone(Base):
    """A milestone whose one-time reward has been granted."""
    __tablename__ = "user_milestones"

    user_id = Column(Text, ForeignKey("users.id"), primary_key=True)
    milestone_id = Column(Text, primary_key=True)
    completed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="milestones")


class CollectionEntry(Base):
    """An owned collectible and its growth state."""
    __tablename__ = "owned_collectibles"

    user_id = Column(Text, ForeignKey("users.id"), primary_key=True)
    collectible_id = Column(Text, primary_key=True)
    rarity = Column(String(16), nullable=False)
    level = Column(Integer, nullable=False, default=1)
    experience = Column(Integer, nullable=False, default=0)
    acquired_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    duplicate_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index('idx_collection_rarity', 'user_id', 'rarity'),
    )

    user = relationship("User", back_populates="collection")


class PullHistory(Base):
    """Immutable log of gacha pull results."""
    __tablename__ = "pull_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Text, ForeignKey("users.id"), nullable=False)
    collectible_id = Column(Text, nullable=False)
    rarity = Column(String(16), nullable=False)
    is_new = Column(Boolean, nullable=False)
    duplicate_count = Column(Integer, nullable=False, default=0)
    pity_applied = Column(Boolean, nullable=False, default=False)
    pulled_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_pull_history_user', 'user_id', 'pulled_at'),
    )

    user = relationship("User", back_populates="pulls")


class FeatureUnlock(Base):
    """A feature made available by reaching its level threshold."""
    __tablename__ = "feature_unlocks"

    user_id = Column(Text, ForeignKey("users.id"), primary_key=True)
    feature = Column(Text, primary_key=True)
    unlocked_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="feature_unlocks")


class QuizResult(Base):
    """Quiz score feed used by adaptive difficulty."""
    __tablename__ = "quiz_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Text, ForeignKey("users.id"), nullable=False)
    score = Column(Float, nullable=False)
    completed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_quiz_results_user', 'user_id', 'completed_at'),
    )

    user = relationship("User", back_populates="quiz_results")


class LevelUp(Base):
    """Audit log of level transitions."""
    __tablename__ = "level_ups"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Text, ForeignKey("users.id"), nullable=False)
    from_level = Column(Integer, nullable=False)
    to_level = Column(Integer, nullable=False)
    tickets_granted = Column(Integer, nullable=False, default=0)
    achieved_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("to_level > from_level", name="ck_level_ups_increasing"),
    )

    user = relationship("User", back_populates="level_ups")
