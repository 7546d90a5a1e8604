"""
Academic profile helpers: the degree catalogue, editing helpers for the
academics form, and the mapping between that form and experience rows.
"""
from typing import Dict, List

from schemas import (
    Experience,
    OnboardingAcademics,
    OnboardingCourse,
    OnboardingExchange,
)

BOCCONI_UNIVERSITY = "Bocconi University"

BOCCONI_DEGREES: Dict[str, List[str]] = {
    "UG": [
        "Economic and Social Sciences",
        "Economics and Management for Arts, Culture and Communication",
        "Economics, Management and Computer Science",
        "International Economics and Finance",
        "International Economics and Management",
        "International Politics and Government",
        "Mathematical and Computing Sciences for Artificial Intelligence",
        "World Bachelor in Business",
        "Bachelor in Global Law",
    ],
    "MSC": [
        "Accounting and Financial Management",
        "Artificial Intelligence",
        "Cyber Risk Strategy and Governance",
        "Data Analytics and Artificial Intelligence in Health Sciences",
        "Data Science and Business Analytics",
        "Economic and Social Sciences",
        "Economics and Management in Arts, Culture, Media and Entertainment",
        "Economics and Management of Government and International Organizations",
        "Finance",
        "Innovation, Technology and Entrepreneurship",
        "International Management",
        "Marketing Management",
        "Politics and Policy Analysis",
        "Transformative Sustainability",
        "Giurisprudenza",
    ],
}

ALL_DEGREES: List[str] = BOCCONI_DEGREES["UG"] + BOCCONI_DEGREES["MSC"]


def degree_level(degree: str) -> str:
    if degree.startswith("Bachelor") or degree == "World Bachelor in Business":
        return "UG"
    return "MSc"


def validate_current_degree(degree: str) -> str:
    """Return the stripped degree; raise ValueError unless it is blank or in the catalogue."""
    degree = degree.strip()
    if degree and degree not in ALL_DEGREES:
        raise ValueError(f"Unknown degree: {degree}")
    return degree


def available_degrees(academics: OnboardingAcademics) -> List[str]:
    """Degrees that can still be added as 'other degrees'."""
    return [
        d for d in ALL_DEGREES
        if d != academics.current_degree and d not in academics.other_degrees
    ]


def add_other_degree(academics: OnboardingAcademics, degree: str) -> OnboardingAcademics:
    if degree not in available_degrees(academics):
        raise ValueError(f"Degree cannot be added: {degree}")
    return academics.model_copy(update={"other_degrees": academics.other_degrees + [degree]})


def remove_other_degree(academics: OnboardingAcademics, degree: str) -> OnboardingAcademics:
    return academics.model_copy(
        update={"other_degrees": [d for d in academics.other_degrees if d != degree]}
    )


def add_course(academics: OnboardingAcademics, course: OnboardingCourse) -> OnboardingAcademics:
    if not course.course_name.strip():
        raise ValueError("Course name is required")
    return academics.model_copy(update={"courses": academics.courses + [course.model_copy()]})


def remove_course(academics: OnboardingAcademics, index: int) -> OnboardingAcademics:
    if index < 0 or index >= len(academics.courses):
        raise ValueError(f"No course at position {index}")
    return academics.model_copy(
        update={"courses": [c for i, c in enumerate(academics.courses) if i != index]}
    )


def _row(exp_type: str, organization: str, **fields) -> dict:
    row = {
        "exp_type": exp_type,
        "organization": organization,
        "role": None,
        "level": None,
        "start_date": None,
        "end_date": None,
        "semester": None,
        "code": None,
    }
    row.update(fields)
    return row


def build_experience_rows(academics: OnboardingAcademics) -> List[dict]:
    """
    Derive the experience rows that represent an academics form.

    Other degrees become 'degree' rows at Bocconi, courses with a name become
    'course' rows, and an enabled exchange with a destination becomes one
    'exchange' row. Rows carry no user_id.
    """
    rows = []

    for degree in academics.other_degrees:
        rows.append(_row("degree", BOCCONI_UNIVERSITY, role=degree, level=degree_level(degree)))

    for course in academics.courses:
        name = course.course_name.strip()
        if name:
            rows.append(_row("course", name, code=course.course_code.strip() or None))

    exchange = academics.exchange
    if exchange.enabled and exchange.destination.strip():
        rows.append(_row(
            "exchange",
            exchange.destination.strip(),
            level=exchange.level or None,
            semester=exchange.semester or None,
        ))

    return rows


def hydrate_academics(current_degree: str, experiences: List[Experience]) -> OnboardingAcademics:
    """Rebuild the academics form from stored experience rows."""
    other_degrees = [e.role or "" for e in experiences if e.exp_type == "degree"]
    courses = [
        OnboardingCourse(course_name=e.organization or "", course_code=e.code or "")
        for e in experiences if e.exp_type == "course"
    ]

    exchange = OnboardingExchange()
    exchange_row = next((e for e in experiences if e.exp_type == "exchange"), None)
    if exchange_row is not None:
        exchange = OnboardingExchange(
            enabled=True,
            level=exchange_row.level if exchange_row.level in ("UG", "MSc", "Free Mover") else "",
            destination=exchange_row.organization or "",
            semester=exchange_row.semester if exchange_row.semester in ("1st", "2nd") else "",
        )

    return OnboardingAcademics(
        current_degree=current_degree or "",
        other_degrees=other_degrees,
        courses=courses,
        exchange=exchange,
    )
