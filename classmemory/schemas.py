from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# =========================
# ENUMS
# =========================
class Role(str, enum.Enum):
    student = "student"
    teacher = "teacher"
    admin = "admin"


class ChapterStatus(str, enum.Enum):
    collecting = "Collecting"
    ai_ready = "AI Ready"
    compiled = "Compiled"


class ContributionType(str, enum.Enum):
    takeaway = "takeaway"
    notes_photo = "notes_photo"
    resource = "resource"
    solved_example = "solved_example"
    confusion = "confusion"


class RecordType(str, enum.Enum):
    """Values of the ``type`` discriminator in a thread/post attribute bag."""
    school = "school"
    chapter = "chapter"
    subject = "subject"
    course = "course"
    contribution = "contribution"
    unified_notes = "unified_notes"
    membership = "membership"
    ai_generation = "ai_generation"
    school_settings = "school_settings"


THREAD_TYPES = frozenset({RecordType.school, RecordType.chapter})


# =========================
# NOTE SECTIONS
# =========================
class _Camel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class KeyConcept(_Camel):
    title: str
    explanation: str = ""


class Definition(_Camel):
    term: str
    definition: str = ""


class Formula(_Camel):
    name: str = ""
    formula: str
    description: str = ""


class WorkedExample(_Camel):
    title: str = ""
    problem: str
    solution: str = ""


class NoteResource(_Camel):
    title: str = "Resource"
    url: str = "#"
    type: str = "link"


class NoteSections(_Camel):
    overview: List[str] = []
    key_concepts: List[KeyConcept] = Field(default_factory=list, alias="keyConcepts")
    definitions: List[Definition] = []
    formulas: List[Formula] = []
    steps: List[str] = []
    examples: List[WorkedExample] = []
    mistakes: List[str] = []
    resources: List[NoteResource] = []
    quick_revision: List[str] = Field(default_factory=list, alias="quickRevision")


# =========================
# DOMAIN ENTITIES (closed tagged union on ``kind``)
# =========================
class _Entity(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = ""
    owner_id: str = ""
    created_at: datetime = EPOCH
    is_sandbox: bool = False


class School(_Entity):
    kind: Literal["school"] = "school"
    name: str = "Untitled School"
    description: Optional[str] = None
    join_key: str = ""
    created_by: Optional[str] = None


class Subject(_Entity):
    kind: Literal["subject"] = "subject"
    school_id: str = ""
    name: str = "Untitled Subject"
    description: Optional[str] = None
    color: str = "#3B82F6"


class Course(_Entity):
    kind: Literal["course"] = "course"
    school_id: str = ""
    subject_id: str = ""
    code: str = "COURSE"
    title: str = "Untitled Course"
    description: Optional[str] = None
    teacher: str = "TBD"
    term: str = "Current"


class Chapter(_Entity):
    kind: Literal["chapter"] = "chapter"
    course_id: str = ""
    label: str = "Chapter"
    title: str = "Untitled Chapter"
    description: Optional[str] = None
    status: ChapterStatus = ChapterStatus.collecting


class Contribution(_Entity):
    kind: Literal["contribution"] = "contribution"
    chapter_id: str = ""
    type: ContributionType = ContributionType.takeaway
    title: Optional[str] = None
    content: str = ""
    anonymous: bool = False
    author_id: str = ""
    author_name: Optional[str] = None
    helpful_count: int = 0
    reply_count: int = 0
    link: Optional[str] = None
    image_url: Optional[str] = None
    links: List[str] = []
    parent_id: Optional[str] = None


class UnifiedNotes(_Entity):
    kind: Literal["unified_notes"] = "unified_notes"
    chapter_id: str = ""
    version: int = 1
    generated_by: str = ""
    generator_role: Role = Role.student
    generated_at: datetime = EPOCH
    contribution_count: int = 0
    sections: NoteSections = NoteSections()


class Membership(_Entity):
    kind: Literal["membership"] = "membership"
    user_id: str = ""
    school_id: str = ""
    role: Role = Role.student
    joined_at: datetime = EPOCH


class AIGenerationRecord(_Entity):
    kind: Literal["ai_generation"] = "ai_generation"
    chapter_id: str = ""
    generated_by: str = ""
    generator_role: Role = Role.student
    contribution_count: int = 0
    generated_at: datetime = EPOCH


class SchoolSettings(_Entity):
    kind: Literal["school_settings"] = "school_settings"
    school_id: str = ""
    min_contributions: int = 5
    student_cooldown: float = 2.0   # hours
    teacher_cooldown: float = 0.5   # hours
    updated_at: datetime = EPOCH


DomainEntity = Annotated[
    Union[
        School, Subject, Course, Chapter, Contribution,
        UnifiedNotes, Membership, AIGenerationRecord, SchoolSettings,
    ],
    Field(discriminator="kind"),
]


# =========================
# SERVICE RESULTS / API DTOs
# =========================
class MembershipInfo(BaseModel):
    role: Role
    joined_at: datetime


class Eligibility(BaseModel):
    allowed: bool
    reason: Optional[str] = None
    contribution_count: Optional[int] = None
    required: Optional[int] = None
    remaining_minutes: Optional[int] = None


class GenerationResult(BaseModel):
    post_id: str
    version: int
    content: NoteSections
    contribution_count: int


class PermissionCheck(BaseModel):
    allowed: bool
    user_id: str
    school_id: str
    role: Optional[Role] = None


class CreatedSchool(BaseModel):
    school_id: str
    join_key: str


class JoinedSchool(BaseModel):
    school_id: str
    school_name: str
    role: Role
    already_member: bool = False


class SchoolWithRole(BaseModel):
    school: School
    role: Role
    joined_at: datetime


class SearchHit(BaseModel):
    kind: str
    id: str
    title: str
    excerpt: str = ""
    chapter_id: Optional[str] = None
    contribution_type: Optional[ContributionType] = None
    version: Optional[int] = None
    created_at: datetime = EPOCH


class SearchResults(BaseModel):
    results: List[SearchHit] = []
    results_by_type: Dict[str, List[SearchHit]] = {}


class ProvisionSummary(BaseModel):
    school_id: str
    school_name: str
    already_provisioned: bool = False
    subject_count: int = 0
    course_count: int = 0
    chapter_count: int = 0
    contribution_count: int = 0


class CurrentUser(BaseModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None


# --- request bodies ---
class SchoolCreate(BaseModel):
    name: str
    description: Optional[str] = None


class JoinRequest(BaseModel):
    join_key: str = Field(alias="joinKey")
    model_config = ConfigDict(populate_by_name=True)


class RoleUpdate(BaseModel):
    new_role: str = Field(alias="newRole")
    model_config = ConfigDict(populate_by_name=True)


class AISettingsUpdate(BaseModel):
    min_contributions: Optional[Any] = Field(default=None, alias="minContributions")
    student_cooldown: Optional[Any] = Field(default=None, alias="studentCooldown")
    teacher_cooldown: Optional[Any] = Field(default=None, alias="teacherCooldown")
    model_config = ConfigDict(populate_by_name=True)


class SubjectCreate(BaseModel):
    name: str
    description: Optional[str] = None
    color: Optional[str] = None


class CourseCreate(BaseModel):
    code: str
    title: str
    description: Optional[str] = None
    teacher: Optional[str] = None
    term: Optional[str] = None


class ChapterCreate(BaseModel):
    title: str
    label: Optional[str] = None
    description: Optional[str] = None


class ContributionCreate(BaseModel):
    type: ContributionType = ContributionType.takeaway
    title: Optional[str] = None
    content: str
    anonymous: bool = False
    link: Optional[str] = None
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    links: List[str] = []
    parent_id: Optional[str] = Field(default=None, alias="parentId")
    model_config = ConfigDict(populate_by_name=True)


class ReplyCreate(BaseModel):
    content: str
    anonymous: bool = False
