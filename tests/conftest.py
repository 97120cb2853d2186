"""Shared test fixtures."""
import os
from datetime import datetime, timedelta
from typing import Any, Dict, Generator

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Keep the app module from creating a database file on import
os.environ.setdefault("DATABASE_URL", "sqlite://")

# Import all models so SQLModel.metadata knows about them
from studentrecords.models.student import ClassRoom, Student  # noqa: F401
from studentrecords.models.sync import SyncLog  # noqa: F401


def make_portal_detail(student_id: str = "2312663", **overrides) -> Dict[str, Any]:
    """A StudentInfo obj1 record shaped like the Portal's."""
    raw = {
        "StudentID": student_id,
        "LastName": "Nguyễn",
        "MiddleName": "Văn",
        "FirstName": "An",
        "StudentName": "Nguyễn Văn An",
        "FileImage": None,
        "Birthday": "15/03/2003",
        "BirthPlace": "Lâm Đồng",
        "Gender": True,
        "EthnicName": "Kinh",
        "ReligionName": None,
        "IDCard": "068203001234",
        "HomePhone": "0263382000",
        "MobilePhone": "0912345678",
        "Email": "an.nguyen@gmail.com",
        "ContactAddress": "01 Phù Đổng Thiên Vương, Đà Lạt",
        "FatherName": "Nguyễn Văn Bình",
        "MotherName": "Trần Thị Cúc",
        "ContactPersonName": "Nguyễn Văn Bình",
        "ContactPersonPhone": "0987654321",
        "CourseID": "K46",
        "CourseName": "Khóa 46",
        "DepartmentID": "CNTT",
        "DepartmentName": "Khoa Công nghệ Thông tin",
        "OlogyID": "7480201",
        "OlogyName": "Công nghệ thông tin",
        "ClassStudentID": "CTK46A",
        "StudyStatusID": "1",
        "StudyStatusName": "Đang học",
        "StudyProgramID": "CQ23CT-PM",
        "StudyProgramName": "Công nghệ thông tin - Kỹ thuật phần mềm",
        "EnrollYear": 2022,
        "contact": {
            "StudentID": student_id,
            "ProfessorID": "GV001",
            "ProfessorName": "Trần Văn Cố Vấn",
            "ClassStudentName": "Công nghệ thông tin K46A",
        },
    }
    raw.update(overrides)
    return raw


class FakeClock:
    """Deterministic naive-UTC clock; each call advances by `step`."""

    def __init__(self, start: datetime = datetime(2025, 9, 1, 8, 0), step: timedelta = timedelta(seconds=1)):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="annotated_student")
def annotated_student_fixture(test_session: Session) -> Student:
    """A persisted student whose staff-owned fields are all filled in."""
    student = Student(
        student_id="2312663",
        full_name="Old Name",
        custom_phone="0900000001",
        temporary_address="KTX Đại học Đà Lạt, phòng 204",
        permanent_address="Bảo Lộc, Lâm Đồng",
        emergency_contact="Nguyễn Thị Dung",
        emergency_phone="0900000002",
        notes="Học bổng khuyến khích HK1",
    )
    test_session.add(student)
    test_session.commit()
    test_session.refresh(student)
    return student
