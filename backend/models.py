# models.py - Database models for the MapRoulette API
# - Projects own challenges, challenges own tasks
# - Surveys are challenges (challenge_type = SURVEY) with answers
# - Users are keyed by their OSM id for group membership and status actions
# - status_actions and actions are append-only audit tables

from datetime import datetime, timezone
from enum import IntEnum
from sqlalchemy import (
    Column, String, DateTime, Boolean, Integer, Float,
    ForeignKey, Text, Index, Table, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from config import DEFAULT_THEME

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


# ============================================================
# ENUMS
# ============================================================

class TaskStatus(IntEnum):
    CREATED = 0
    FIXED = 1
    FALSE_POSITIVE = 2
    SKIPPED = 3
    DELETED = 4
    ALREADY_FIXED = 5
    TOO_HARD = 6


# Statuses a task may move to from a given status (same status always allowed)
STATUS_PROGRESSIONS = {
    TaskStatus.CREATED: set(TaskStatus),
    TaskStatus.FIXED: set(),
    TaskStatus.FALSE_POSITIVE: {TaskStatus.FIXED},
    TaskStatus.SKIPPED: {
        TaskStatus.FIXED, TaskStatus.FALSE_POSITIVE, TaskStatus.DELETED,
        TaskStatus.ALREADY_FIXED, TaskStatus.TOO_HARD,
    },
    TaskStatus.DELETED: {TaskStatus.CREATED},
    TaskStatus.ALREADY_FIXED: set(),
    TaskStatus.TOO_HARD: {
        TaskStatus.FIXED, TaskStatus.FALSE_POSITIVE,
        TaskStatus.ALREADY_FIXED, TaskStatus.DELETED,
    },
}

# Statuses a task can be served in when picking random work
AVAILABLE_STATUSES = (TaskStatus.CREATED, TaskStatus.SKIPPED, TaskStatus.TOO_HARD)


def is_valid_status(status: int) -> bool:
    return status in TaskStatus._value2member_map_


def is_valid_status_progression(current: int, requested: int) -> bool:
    if not is_valid_status(current) or not is_valid_status(requested):
        return False
    if current == requested:
        return True
    return TaskStatus(requested) in STATUS_PROGRESSIONS[TaskStatus(current)]


class ChallengeType(IntEnum):
    CHALLENGE = 1
    SURVEY = 4


class ChallengeDifficulty(IntEnum):
    EASY = 1
    NORMAL = 2
    EXPERT = 3


class GroupType(IntEnum):
    SUPER_USER = -1
    ADMIN = 1


class ItemType(IntEnum):
    PROJECT = 0
    CHALLENGE = 1
    TASK = 2
    TAG = 3
    SURVEY = 4
    USER = 5
    GROUP = 6


class ActionType(IntEnum):
    UPDATED = 0
    CREATED = 1
    DELETED = 2
    TASK_VIEWED = 3
    TASK_STATUS_SET = 4
    TAG_ADDED = 5
    TAG_REMOVED = 6
    QUESTION_ANSWERED = 7


# Recording level per action type, compared against config.ACTION_LEVEL
ACTION_LEVELS = {
    ActionType.UPDATED: 2,
    ActionType.CREATED: 2,
    ActionType.DELETED: 2,
    ActionType.TASK_VIEWED: 3,
    ActionType.TASK_STATUS_SET: 1,
    ActionType.TAG_ADDED: 2,
    ActionType.TAG_REMOVED: 2,
    ActionType.QUESTION_ANSWERED: 1,
}


# ============================================================
# ASSOCIATION TABLES
# ============================================================

user_groups = Table(
    "user_groups",
    Base.metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("osm_user_id", Integer, ForeignKey("users.osm_id", ondelete="CASCADE"), nullable=False, index=True),
    Column("group_id", Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True),
    UniqueConstraint("osm_user_id", "group_id", name="uq_user_groups_member"),
)

challenge_tags = Table(
    "challenge_tags",
    Base.metadata,
    Column("challenge_id", Integer, ForeignKey("challenges.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)

task_tags = Table(
    "task_tags",
    Base.metadata,
    Column("task_id", Integer, ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


# ============================================================
# PROJECTS & GROUPS
# ============================================================

class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    enabled = Column(Boolean, default=True, nullable=False)
    created = Column(DateTime(timezone=True), default=utcnow)
    modified = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    challenges = relationship("Challenge", back_populates="project", passive_deletes=True)
    groups = relationship("Group", back_populates="project", passive_deletes=True)


class Group(Base):
    __tablename__ = "groups"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True)
    group_type = Column(Integer, nullable=False, default=GroupType.ADMIN)
    created = Column(DateTime(timezone=True), default=utcnow)

    project = relationship("Project", back_populates="groups")


# ============================================================
# CHALLENGES, SURVEYS & TASKS
# ============================================================

class Challenge(Base):
    __tablename__ = "challenges"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    description = Column(Text, nullable=True)
    blurb = Column(Text, nullable=True)
    instruction = Column(Text, nullable=True)
    difficulty = Column(Integer, default=ChallengeDifficulty.NORMAL, nullable=False)
    featured = Column(Boolean, default=False, nullable=False, index=True)
    enabled = Column(Boolean, default=True, nullable=False, index=True)
    challenge_type = Column(Integer, default=ChallengeType.CHALLENGE, nullable=False)
    created = Column(DateTime(timezone=True), default=utcnow)
    modified = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    project = relationship("Project", back_populates="challenges")
    tasks = relationship("Task", back_populates="challenge", passive_deletes=True)
    tags = relationship("Tag", secondary=challenge_tags, order_by="Tag.name")
    answers = relationship("Answer", back_populates="survey", order_by="Answer.id", passive_deletes=True)

    __table_args__ = (
        UniqueConstraint("project_id", "name", name="uq_challenge_project_name"),
    )


class Answer(Base):
    __tablename__ = "answers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    survey_id = Column(Integer, ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False, index=True)
    answer = Column(Text, nullable=False)
    created = Column(DateTime(timezone=True), default=utcnow)

    survey = relationship("Challenge", back_populates="answers")


class SurveyAnswer(Base):
    __tablename__ = "survey_answers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created = Column(DateTime(timezone=True), default=utcnow)
    osm_user_id = Column(Integer, nullable=False, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    survey_id = Column(Integer, ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    answer_id = Column(Integer, ForeignKey("answers.id", ondelete="CASCADE"), nullable=False)


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    challenge_id = Column(Integer, ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False, index=True)
    instruction = Column(Text, nullable=True)
    location = Column(Text, nullable=True)  # GeoJSON
    status = Column(Integer, default=TaskStatus.CREATED, nullable=False, index=True)
    created = Column(DateTime(timezone=True), default=utcnow)
    modified = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    challenge = relationship("Challenge", back_populates="tasks")
    tags = relationship("Tag", secondary=task_tags, order_by="Tag.name")

    __table_args__ = (
        UniqueConstraint("challenge_id", "name", name="uq_task_challenge_name"),
    )


class Tag(Base):
    __tablename__ = "tags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    created = Column(DateTime(timezone=True), default=utcnow)


# ============================================================
# USERS
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    osm_id = Column(Integer, unique=True, nullable=False, index=True)
    created = Column(DateTime(timezone=True), default=utcnow)
    modified = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    theme = Column(String, nullable=False, default=DEFAULT_THEME)
    osm_created = Column(DateTime(timezone=True), default=utcnow)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    avatar_url = Column(String, nullable=True)
    home_latitude = Column(Float, nullable=False, default=0.0)
    home_longitude = Column(Float, nullable=False, default=0.0)
    api_key = Column(String, nullable=True, unique=True)  # SHA-256 digest
    oauth_token = Column(String, nullable=False)
    oauth_secret = Column(String, nullable=False)

    groups = relationship(
        "Group",
        secondary=user_groups,
        primaryjoin="User.osm_id == user_groups.c.osm_user_id",
        secondaryjoin="Group.id == user_groups.c.group_id",
        order_by="Group.id",
        viewonly=True,
    )

    __table_args__ = (
        Index("idx_user_oauth", "oauth_token", "oauth_secret"),
    )


# ============================================================
# STATUS ACTIONS & ACTIONS
# ============================================================

class StatusAction(Base):
    __tablename__ = "status_actions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created = Column(DateTime(timezone=True), default=utcnow, index=True)
    osm_user_id = Column(Integer, nullable=False, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    challenge_id = Column(Integer, ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    old_status = Column(Integer, nullable=False)
    status = Column(Integer, nullable=False)


class Action(Base):
    __tablename__ = "actions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created = Column(DateTime(timezone=True), default=utcnow, index=True)
    osm_user_id = Column(Integer, nullable=True, index=True)
    type_id = Column(Integer, nullable=False)
    item_id = Column(Integer, nullable=False)
    action = Column(Integer, nullable=False)
    status = Column(Integer, nullable=False, default=0)
    extra = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_action_item", "type_id", "item_id"),
    )
