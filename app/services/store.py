"""Record store: snapshot reads and single-transaction delta writes.

``atomic_write`` applies a whole ProgressionDelta in one transaction. The
user row is updated with ``WHERE version = expected_version`` first; if no
row matches, another write got there first and the delta is rejected with
VersionConflict so the caller can re-read and recompute. Any database
failure rolls the transaction back and surfaces as StoreUnavailable, which
callers treat as transient.
"""
import logging
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import desc, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.models import (
    CollectionEntry,
    CompletedLesson,
    FeatureUnlock,
    LevelUp,
    PullHistory,
    QuizResult,
    User,
    UserAchievement,
    UserMilestone,
)
from app.constants import DIFFICULTY_WINDOW
from app.services.rarity import Rarity
from app.services.records import (
    AchievementProgress,
    OwnedCollectible,
    ProgressionDelta,
    UserProgressionRecord,
)

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base class for record store failures."""


class StoreUnavailable(StoreError):
    """The store could not be reached or the call timed out. Transient."""


class VersionConflict(StoreError):
    """The record changed since it was read; nothing was written."""


class UnknownUser(StoreError):
    """No progression record exists for the user."""


class RecordStore:
    """SQLAlchemy-backed progression record store."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def read(self, user_id: str) -> UserProgressionRecord:
        """
        Load a full snapshot of a user's progression record.

        Raises:
            UnknownUser: If the user has no record
            StoreUnavailable: On database failure
        """
        db = self._session_factory()
        try:
            user = db.query(User).filter(User.id == user_id).first()
            if user is None:
                raise UnknownUser(user_id)
            return self._snapshot(db, user)
        except SQLAlchemyError as e:
            logger.error(f"Record read failed: {e}", extra={"user_id": user_id}, exc_info=True)
            raise StoreUnavailable(str(e)) from e
        finally:
            db.close()

    def get_or_create(self, user_id: str) -> UserProgressionRecord:
        """Read a record, creating an empty one on first activity."""
        db = self._session_factory()
        try:
            user = db.query(User).filter(User.id == user_id).first()
            if user is None:
                user = User(id=user_id)
                db.add(user)
                db.commit()
                logger.info("Created progression record", extra={"user_id": user_id})
            return self._snapshot(db, user)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Record creation failed: {e}", extra={"user_id": user_id}, exc_info=True)
            raise StoreUnavailable(str(e)) from e
        finally:
            db.close()

    def exists(self, user_id: str) -> bool:
        db = self._session_factory()
        try:
            return db.query(User.id).filter(User.id == user_id).first() is not None
        except SQLAlchemyError as e:
            raise StoreUnavailable(str(e)) from e
        finally:
            db.close()

    def touch(self, user_id: str) -> None:
        """Update last_active_at without bumping the record version."""
        db = self._session_factory()
        try:
            db.execute(update(User).where(User.id == user_id).values(last_active_at=datetime.utcnow()))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreUnavailable(str(e)) from e
        finally:
            db.close()

    def atomic_write(self, user_id: str, delta: ProgressionDelta) -> int:
        """
        Apply a delta as one transaction.

        Args:
            user_id: Record owner
            delta: Consolidated changes, with the version they were computed from

        Returns:
            The record's new version

        Raises:
            VersionConflict: If the record's version is not delta.expected_version
            StoreUnavailable: On database failure; nothing is written
        """
        occurred_at = delta.occurred_at or datetime.utcnow()
        new_version = delta.expected_version + 1
        db = self._session_factory()
        try:
            values = dict(delta.user_fields)
            values["version"] = new_version
            values["last_active_at"] = datetime.utcnow()
            result = db.execute(
                update(User)
                .where(User.id == user_id, User.version == delta.expected_version)
                .values(**values)
            )
            if result.rowcount != 1:
                db.rollback()
                raise VersionConflict(
                    f"Record {user_id} is no longer at version {delta.expected_version}"
                )

            for lesson_id in delta.lessons:
                db.add(CompletedLesson(user_id=user_id, lesson_id=lesson_id, completed_at=occurred_at))

            for achievement_id, progress in delta.achievements.items():
                self._upsert_achievement(db, user_id, achievement_id, progress)

            for milestone_id in delta.milestones:
                db.add(UserMilestone(user_id=user_id, milestone_id=milestone_id, completed_at=occurred_at))

            for owned in delta.collection.values():
                self._upsert_collectible(db, user_id, owned)

            for feature in delta.features:
                db.add(FeatureUnlock(user_id=user_id, feature=feature, unlocked_at=occurred_at))

            for pull in delta.pulls:
                db.add(PullHistory(
                    user_id=user_id,
                    collectible_id=pull.collectible_id,
                    rarity=pull.rarity.value,
                    is_new=pull.is_new,
                    duplicate_count=pull.duplicate_count,
                    pity_applied=pull.pity_applied,
                    pulled_at=pull.pulled_at,
                ))

            for score in delta.quiz_scores:
                db.add(QuizResult(user_id=user_id, score=score, completed_at=occurred_at))

            for from_level, to_level, tickets in delta.level_ups:
                db.add(LevelUp(
                    user_id=user_id,
                    from_level=from_level,
                    to_level=to_level,
                    tickets_granted=tickets,
                    achieved_at=occurred_at,
                ))

            db.commit()
            logger.debug(f"Committed delta at version {new_version}", extra={"user_id": user_id})
            return new_version
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Consolidated write failed: {e}", extra={"user_id": user_id}, exc_info=True)
            raise StoreUnavailable(str(e)) from e
        finally:
            db.close()

    def recent_scores(self, user_id: str, limit: int = DIFFICULTY_WINDOW) -> List[float]:
        """Latest quiz scores, oldest first."""
        db = self._session_factory()
        try:
            return self._recent_scores(db, user_id, limit)
        except SQLAlchemyError as e:
            raise StoreUnavailable(str(e)) from e
        finally:
            db.close()

    def pull_history(self, user_id: str, limit: Optional[int] = None) -> List[PullHistory]:
        """Pull log rows, newest first. Rows are detached from the session."""
        db = self._session_factory()
        try:
            query = db.query(PullHistory).filter(PullHistory.user_id == user_id).order_by(
                desc(PullHistory.pulled_at), desc(PullHistory.id)
            )
            if limit is not None:
                query = query.limit(limit)
            rows = query.all()
            db.expunge_all()
            return rows
        except SQLAlchemyError as e:
            raise StoreUnavailable(str(e)) from e
        finally:
            db.close()

    # Helpers

    def _recent_scores(self, db: Session, user_id: str, limit: int) -> List[float]:
        rows = db.query(QuizResult.score).filter(QuizResult.user_id == user_id).order_by(
            desc(QuizResult.completed_at), desc(QuizResult.id)
        ).limit(limit).all()
        return [row.score for row in reversed(rows)]

    def _snapshot(self, db: Session, user: User) -> UserProgressionRecord:
        lessons = db.query(CompletedLesson.lesson_id).filter(CompletedLesson.user_id == user.id).all()
        achievements = db.query(UserAchievement).filter(UserAchievement.user_id == user.id).all()
        milestones = db.query(UserMilestone.milestone_id).filter(UserMilestone.user_id == user.id).all()
        collection = db.query(CollectionEntry).filter(CollectionEntry.user_id == user.id).all()
        features = db.query(FeatureUnlock.feature).filter(FeatureUnlock.user_id == user.id).all()

        return UserProgressionRecord(
            user_id=user.id,
            version=user.version,
            level=user.level,
            experience=user.experience,
            streak_days=user.streak_days,
            last_streak_update=user.last_streak_update,
            gacha_tickets=user.gacha_tickets,
            completed_lessons=frozenset(row.lesson_id for row in lessons),
            quizzes_completed=user.quizzes_completed,
            perfect_scores=user.perfect_scores,
            failed_quizzes=user.failed_quizzes,
            debate_wins=user.debate_wins,
            debate_win_streak=user.debate_win_streak,
            total_time_spent=user.total_time_spent,
            pulls_since_rare=user.pulls_since_rare,
            difficulty_multiplier=user.difficulty_multiplier,
            achievements={
                a.achievement_id: AchievementProgress(
                    current_value=a.current_value,
                    target_value=a.target_value,
                    completed=a.completed,
                    unlocked_at=a.unlocked_at,
                )
                for a in achievements
            },
            milestones=frozenset(row.milestone_id for row in milestones),
            collection={
                c.collectible_id: OwnedCollectible(
                    collectible_id=c.collectible_id,
                    rarity=Rarity(c.rarity),
                    level=c.level,
                    experience=c.experience,
                    acquired_at=c.acquired_at,
                    duplicate_count=c.duplicate_count,
                )
                for c in collection
            },
            unlocked_features=frozenset(row.feature for row in features),
            recent_scores=tuple(self._recent_scores(db, user.id, DIFFICULTY_WINDOW)),
        )

    def _upsert_achievement(self, db: Session, user_id: str, achievement_id: str, progress: AchievementProgress) -> None:
        row = db.get(UserAchievement, (user_id, achievement_id))
        if row is None:
            row = UserAchievement(user_id=user_id, achievement_id=achievement_id)
            db.add(row)
        elif row.completed:
            # Completed achievements are frozen
            return
        row.current_value = progress.current_value
        row.target_value = progress.target_value
        row.completed = progress.completed
        row.unlocked_at = progress.unlocked_at

    def _upsert_collectible(self, db: Session, user_id: str, owned: OwnedCollectible) -> None:
        row = db.get(CollectionEntry, (user_id, owned.collectible_id))
        if row is None:
            row = CollectionEntry(
                user_id=user_id,
                collectible_id=owned.collectible_id,
                rarity=owned.rarity.value,
                acquired_at=owned.acquired_at or datetime.utcnow(),
            )
            db.add(row)
        row.level = owned.level
        row.experience = owned.experience
        row.duplicate_count = owned.duplicate_count
