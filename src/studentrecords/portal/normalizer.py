"""
Portal response normalizer.

Converts the raw StudentInfo record from the Portal into the Portal-owned
columns of the local Student model. No DB access here; callers
(sync_service) handle persistence.

The Portal is loose with its data: dates come as "DD/MM/YYYY" or ISO-8601,
empty strings stand in for missing values, and the specialty only exists
as a suffix of the study program code ("CQ23CT-PM"). None of that is
allowed to fail a record; anything unusable becomes None.
"""
from datetime import date, datetime
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel

DEFAULT_EMAIL_DOMAIN = "dlu.edu.vn"
SYNC_SOURCE_PORTAL = "portal"

# Study program suffix → specialty name
SPECIALTIES: Dict[str, str] = {
    "PM": "Kỹ thuật phần mềm",
    "MMT": "Mạng máy tính và truyền thông",
}


class PortalStudentFields(BaseModel):
    """Portal-owned Student columns produced by normalize_student()."""

    last_name: str = ""
    first_name: str = ""
    full_name: str = ""
    birthday: Optional[date] = None
    birth_place: Optional[str] = None
    gender: Optional[bool] = None
    ethnic_name: Optional[str] = None
    religion_name: Optional[str] = None
    id_card: Optional[str] = None
    file_image: Optional[str] = None

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

    portal_mobile_phone: Optional[str] = None
    portal_home_phone: Optional[str] = None
    portal_email: Optional[str] = None
    portal_address: Optional[str] = None
    father_name: Optional[str] = None
    mother_name: Optional[str] = None
    contact_person_name: Optional[str] = None
    contact_person_phone: Optional[str] = None
    school_email: Optional[str] = None

    last_synced_at: datetime
    sync_source: str = SYNC_SOURCE_PORTAL


def _text(value: Any) -> Optional[str]:
    """Strip strings; empty strings and None become None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _int(value: Any) -> Optional[int]:
    """Whole numbers from ints, floats or numeric strings ("2022", "2022.0")."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    if not number.is_integer():
        return None
    return int(number)


def _bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if value in (0, 1):
        return bool(value)
    return None


def parse_portal_date(value: Any) -> Optional[date]:
    """
    Parse a Portal date into a calendar date.

    Accepts "DD/MM/YYYY" and ISO-8601 ("2003-03-15", "2003-03-15T00:00:00").
    Returns None for missing or unparseable input, including impossible
    dates such as "31/02/2003".
    """
    text = _text(value)
    if text is None:
        return None

    if "/" in text:
        try:
            return datetime.strptime(text, "%d/%m/%Y").date()
        except ValueError:
            return None

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def extract_specialty(study_program_id: Any) -> Tuple[Optional[str], Optional[str]]:
    """
    Derive (specialty_code, specialty_name) from a study program id.

    "CQ23CT-PM" → ("PM", "Kỹ thuật phần mềm"). Unknown or missing
    suffixes give (None, None).
    """
    text = _text(study_program_id)
    if text is None:
        return None, None
    for code, name in SPECIALTIES.items():
        if text.endswith(f"-{code}"):
            return code, name
    return None, None


def school_email(student_id: str, domain: str = DEFAULT_EMAIL_DOMAIN) -> str:
    """Institutional mailbox of a student: "{student_id}@{domain}"."""
    return f"{student_id}@{domain}"


def normalize_student(
    raw: Dict[str, Any],
    *,
    student_id: Optional[str] = None,
    synced_at: Optional[datetime] = None,
    email_domain: str = DEFAULT_EMAIL_DOMAIN,
) -> PortalStudentFields:
    """
    Normalize a Portal StudentInfo detail record.

    Args:
        raw: obj1[0] from the StudentInfo endpoint.
        student_id: The id that was requested. The school email is derived
            from it; the record's own StudentID is only a fallback.
        synced_at: Timestamp to stamp as last_synced_at (default: utcnow).
        email_domain: Domain of the derived school email.

    Returns:
        PortalStudentFields; staff-owned columns are never present.
    """
    specialty_code, specialty_name = extract_specialty(raw.get("StudyProgramID"))
    student_id = _text(student_id) or _text(raw.get("StudentID"))

    return PortalStudentFields(
        last_name=_text(raw.get("LastName")) or "",
        first_name=_text(raw.get("FirstName")) or "",
        full_name=_text(raw.get("StudentName")) or "",
        birthday=parse_portal_date(raw.get("Birthday")),
        birth_place=_text(raw.get("BirthPlace")),
        gender=_bool(raw.get("Gender")),
        ethnic_name=_text(raw.get("EthnicName")),
        religion_name=_text(raw.get("ReligionName")),
        id_card=_text(raw.get("IDCard")),
        file_image=_text(raw.get("FileImage")),
        course_id=_text(raw.get("CourseID")),
        course_name=_text(raw.get("CourseName")),
        department_id=_text(raw.get("DepartmentID")),
        department_name=_text(raw.get("DepartmentName")),
        ology_id=_text(raw.get("OlogyID")),
        ology_name=_text(raw.get("OlogyName")),
        class_student_id=_text(raw.get("ClassStudentID")),
        study_status_id=_text(raw.get("StudyStatusID")),
        study_status_name=_text(raw.get("StudyStatusName")),
        study_program_id=_text(raw.get("StudyProgramID")),
        specialty_code=specialty_code,
        specialty_name=specialty_name,
        enroll_year=_int(raw.get("EnrollYear")),
        portal_mobile_phone=_text(raw.get("MobilePhone")),
        portal_home_phone=_text(raw.get("HomePhone")),
        portal_email=_text(raw.get("Email")),
        portal_address=_text(raw.get("ContactAddress")),
        father_name=_text(raw.get("FatherName")),
        mother_name=_text(raw.get("MotherName")),
        contact_person_name=_text(raw.get("ContactPersonName")),
        contact_person_phone=_text(raw.get("ContactPersonPhone")),
        school_email=school_email(student_id, email_domain) if student_id else None,
        last_synced_at=synced_at or datetime.utcnow(),
        sync_source=SYNC_SOURCE_PORTAL,
    )


def normalize_class_metadata(raw: Dict[str, Any]) -> Dict[str, Optional[str]]:
    """
    Pull class-level metadata out of one student's detail record.

    Department and course come from the detail record; the class name and
    advisor come from the attached contact record when present.
    """
    contact = raw.get("contact")
    if not isinstance(contact, dict):
        contact = {}
    return {
        "class_name": _text(contact.get("ClassStudentName")),
        "department_id": _text(raw.get("DepartmentID")),
        "department_name": _text(raw.get("DepartmentName")),
        "course_id": _text(raw.get("CourseID")),
        "course_name": _text(raw.get("CourseName")),
        "advisor_id": _text(contact.get("ProfessorID")),
        "advisor_name": _text(contact.get("ProfessorName")),
    }
