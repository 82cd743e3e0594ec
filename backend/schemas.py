# schemas.py - Domain records returned by the data access layers, and write payloads
from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config import DEFAULT_THEME, is_super_account
from models import ChallengeType, ChallengeDifficulty, GroupType, TaskStatus


def parse_tags(value):
    """Accept tags as a list or a comma separated string"""
    if value is None:
        return None
    if isinstance(value, str):
        value = value.split(",")
    return [t.strip().lower() for t in value if t and t.strip()]


# ============================================================
# USERS
# ============================================================

class RequestToken(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    secret: str


class Location(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float = 0.0
    longitude: float = 0.0


class OSMProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    display_name: str
    description: str = ""
    avatar_url: str = ""
    home_location: Location = Location()
    created: Optional[datetime] = None
    request_token: RequestToken


class Group(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str = ""
    project_id: Optional[int] = None
    group_type: int = GroupType.ADMIN


class User(BaseModel):
    """A user account with its OSM identity and group memberships"""
    model_config = ConfigDict(frozen=True)

    id: int = -1
    created: Optional[datetime] = None
    modified: Optional[datetime] = None
    theme: str = DEFAULT_THEME
    osm_profile: OSMProfile
    groups: List[Group] = Field(default_factory=list)
    api_key: Optional[str] = None  # digest, never the raw key

    @property
    def is_guest(self) -> bool:
        return self.id == GUEST_USER_ID

    @property
    def is_super_user(self) -> bool:
        if self.is_guest:
            return False
        if is_super_account(self.osm_profile.id):
            return True
        return any(g.group_type == GroupType.SUPER_USER for g in self.groups)

    def is_admin_of(self, project_id: int) -> bool:
        if self.is_super_user:
            return True
        return any(
            g.group_type == GroupType.ADMIN and g.project_id == project_id
            for g in self.groups
        )

    def has_write_access(self, user: "User") -> bool:
        """Whether ``user`` may modify this account"""
        return user.is_super_user or (not user.is_guest and user.id == self.id)

    def to_public(self) -> dict:
        return self.model_dump(
            mode="json",
            exclude={"api_key": True, "osm_profile": {"request_token": True}},
        )

    @staticmethod
    def user_or_guest(user: Optional["User"]) -> "User":
        return user if user is not None else GUEST_USER


GUEST_USER_ID = -998

GUEST_USER = User(
    id=GUEST_USER_ID,
    osm_profile=OSMProfile(
        id=-1,
        display_name="Guest",
        description="Anonymous user",
        request_token=RequestToken(token="", secret=""),
    ),
)


class LocationUpdate(BaseModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class OSMProfileUpdate(BaseModel):
    display_name: Optional[str] = None
    description: Optional[str] = None
    avatar_url: Optional[str] = None
    token: Optional[str] = None
    secret: Optional[str] = None
    home_location: Optional[LocationUpdate] = None


class GroupChanges(BaseModel):
    add: List[int] = Field(default_factory=list)
    delete: List[int] = Field(default_factory=list)


class UserUpdate(BaseModel):
    """Fields of a user that may be changed; anything omitted is kept"""
    api_key: Optional[str] = None
    theme: Optional[str] = None
    osm_profile: Optional[OSMProfileUpdate] = None
    groups: Optional[GroupChanges] = None


# ============================================================
# PROJECTS
# ============================================================

class Project(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    enabled: bool = True
    created: Optional[datetime] = None
    modified: Optional[datetime] = None


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    enabled: bool = True


# ============================================================
# TAGS
# ============================================================

class Tag(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None


# ============================================================
# CHALLENGES & SURVEYS
# ============================================================

class Challenge(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    name: str
    project_id: int
    description: Optional[str] = None
    blurb: Optional[str] = None
    instruction: Optional[str] = None
    difficulty: int = ChallengeDifficulty.NORMAL
    featured: bool = False
    enabled: bool = True
    challenge_type: int = ChallengeType.CHALLENGE
    created: Optional[datetime] = None
    modified: Optional[datetime] = None

    @property
    def is_survey(self) -> bool:
        return self.challenge_type == ChallengeType.SURVEY


class Answer(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    survey_id: int
    answer: str


class Survey(Challenge):
    """A survey challenge together with its possible answers"""
    answers: List[Answer] = Field(default_factory=list)


class ChallengeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    project_id: int
    description: Optional[str] = None
    blurb: Optional[str] = None
    instruction: Optional[str] = None
    difficulty: int = Field(default=ChallengeDifficulty.NORMAL, ge=1, le=3)
    featured: bool = False
    enabled: bool = True
    tags: List[str] = Field(default_factory=list)

    @field_validator("tags", mode="before")
    @classmethod
    def split_tags(cls, v):
        return parse_tags(v) or []


class ChallengeUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    blurb: Optional[str] = None
    instruction: Optional[str] = None
    difficulty: Optional[int] = Field(default=None, ge=1, le=3)
    featured: Optional[bool] = None
    enabled: Optional[bool] = None
    tags: Optional[List[str]] = None

    @field_validator("name", "difficulty", "featured", "enabled")
    @classmethod
    def not_null(cls, v, info):
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v

    @field_validator("tags", mode="before")
    @classmethod
    def split_tags(cls, v):
        return parse_tags(v)


class SurveyCreate(ChallengeCreate):
    answers: List[str] = Field(..., min_length=1)


# ============================================================
# TASKS
# ============================================================

class Task(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    name: str
    challenge_id: int
    instruction: Optional[str] = None
    location: Optional[str] = None
    status: int = TaskStatus.CREATED
    created: Optional[datetime] = None
    modified: Optional[datetime] = None


class TaskCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    challenge_id: int
    instruction: Optional[str] = None
    location: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator("tags", mode="before")
    @classmethod
    def split_tags(cls, v):
        return parse_tags(v) or []


class SearchParameters(BaseModel):
    """Filters for picking tasks out of a challenge"""
    challenge_id: Optional[int] = None
    task_search: str = ""
    task_tags: List[str] = Field(default_factory=list)

    @field_validator("task_tags", mode="before")
    @classmethod
    def split_tags(cls, v):
        return parse_tags(v) or []
