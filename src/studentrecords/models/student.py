"""Local student and class models.

A Student row is split into two disjoint column groups:

Portal-owned: copied from the university Portal and overwritten on
    every successful sync of that student.
Staff-owned: maintained by department staff; sync never writes them.

The column names of each group are exported as PORTAL_FIELDS and
STAFF_FIELDS so the sync service and the normalizer agree on the split.
"""
from datetime import date, datetime
from typing import List, Optional

from sqlmodel import Field, Relationship, SQLModel

PORTAL_FIELDS = frozenset({
    # identity
    "last_name",
    "first_name",
    "full_name",
    "birthday",
    "birth_place",
    "gender",
    "ethnic_name",
    "religion_name",
    "id_card",
    "file_image",
    # academic
    "course_id",
    "course_name",
    "department_id",
    "department_name",
    "ology_id",
    "ology_name",
    "class_student_id",
    "study_status_id",
    "study_status_name",
    "study_program_id",
    "specialty_code",
    "specialty_name",
    "enroll_year",
    # contact / family as reported by the Portal
    "portal_mobile_phone",
    "portal_home_phone",
    "portal_email",
    "portal_address",
    "father_name",
    "mother_name",
    "contact_person_name",
    "contact_person_phone",
    "school_email",
    # sync bookkeeping
    "last_synced_at",
    "sync_source",
})

STAFF_FIELDS = frozenset({
    "custom_phone",
    "temporary_address",
    "permanent_address",
    "emergency_contact",
    "emergency_phone",
    "notes",
})


class ClassRoom(SQLModel, table=True):
    """A class as known to the Portal, keyed by its Portal-issued code."""

    id: Optional[int] = Field(default=None, primary_key=True)
    class_student_id: str = Field(unique=True, index=True)
    class_name: str

    department_id: Optional[str] = None
    department_name: Optional[str] = None
    course_id: Optional[str] = None
    course_name: Optional[str] = None
    advisor_id: Optional[str] = None
    advisor_name: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    students: List["Student"] = Relationship(back_populates="classroom")


class Student(SQLModel, table=True):
    """One row per student, keyed by the university-issued student ID."""

    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: str = Field(unique=True, index=True)

    # Identity
    last_name: str = ""
    first_name: str = ""
    full_name: str = ""
    birthday: Optional[date] = None
    birth_place: Optional[str] = None
    gender: Optional[bool] = None  # Portal sends True for male
    ethnic_name: Optional[str] = None
    religion_name: Optional[str] = None
    id_card: Optional[str] = None
    file_image: Optional[str] = None

    # Academic
    course_id: Optional[str] = None
    course_name: Optional[str] = None
    department_id: Optional[str] = None
    department_name: Optional[str] = None
    ology_id: Optional[str] = None
    ology_name: Optional[str] = None
    class_student_id: Optional[str] = None
    study_status_id: Optional[str] = None
    study_status_name: Optional[str] = None
    study_program_id: Optional[str] = None
    specialty_code: Optional[str] = None
    specialty_name: Optional[str] = None
    enroll_year: Optional[int] = None

    # Contact and family, as reported by the Portal
    portal_mobile_phone: Optional[str] = None
    portal_home_phone: Optional[str] = None
    portal_email: Optional[str] = None
    portal_address: Optional[str] = None
    father_name: Optional[str] = None
    mother_name: Optional[str] = None
    contact_person_name: Optional[str] = None
    contact_person_phone: Optional[str] = None
    school_email: Optional[str] = None

    # Staff-owned
    custom_phone: Optional[str] = None
    temporary_address: Optional[str] = None
    permanent_address: Optional[str] = None
    emergency_contact: Optional[str] = None
    emergency_phone: Optional[str] = None
    notes: Optional[str] = None

    last_synced_at: Optional[datetime] = None
    sync_source: Optional[str] = None

    class_id: Optional[int] = Field(default=None, foreign_key="classroom.id", index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    classroom: Optional[ClassRoom] = Relationship(back_populates="students")

    @property
    def portal_phone(self) -> Optional[str]:
        """Portal phone number: mobile when known, else home phone."""
        return self.portal_mobile_phone or self.portal_home_phone
