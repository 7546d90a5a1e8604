"""
Database Schemas for bcontact

Each table model corresponds to a MongoDB collection (profiles, contacts,
experiences, users). The Onboarding* models describe the wizard's form state.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, EmailStr

ExperienceType = Literal["degree", "course", "exchange", "internship"]
Visibility = Literal["private", "all_verified"]
ExchangeLevel = Literal["UG", "MSc", "Free Mover", ""]
ExchangeSemester = Literal["1st", "2nd", ""]


class UserAccount(BaseModel):
    email: EmailStr = Field(..., description="University email address")
    password: Optional[str] = Field(None, description="Hashed password, null for magic-link-only accounts")
    created_at: datetime = Field(..., description="Sign-up time (UTC)")


class Profile(BaseModel):
    user_id: str = Field(..., description="Owning user id")
    first_name: Optional[str] = Field(None, description="Given name")
    last_name: Optional[str] = Field(None, description="Family name")
    bio: Optional[str] = Field(None, description="Short public bio")
    avatar_url: Optional[str] = Field(None, description="Public URL of the avatar image")
    current_degree: Optional[str] = Field(None, description="Degree currently enrolled in")
    onboarding_completed: bool = Field(False, description="Whether the onboarding wizard was finished")
    created_at: Optional[datetime] = Field(None, description="Row creation time (UTC)")


class Contact(BaseModel):
    user_id: str = Field(..., description="Owning user id")
    email: Optional[str] = Field(None, description="Contact email")
    phone: Optional[str] = Field(None, description="Phone number")
    linkedin_url: Optional[str] = Field(None, description="LinkedIn profile")
    instagram: Optional[str] = Field(None, description="Instagram handle")
    visibility: Visibility = Field("private", description="Who may see these contacts")


class Experience(BaseModel):
    id: Optional[str] = Field(None, description="Row id")
    user_id: str = Field(..., description="Owning user id")
    exp_type: ExperienceType = Field(..., description="Kind of experience")
    organization: str = Field(..., description="University, company or course name")
    role: Optional[str] = Field(None, description="Degree name or job title")
    start_date: Optional[str] = Field(None, description="ISO date string")
    end_date: Optional[str] = Field(None, description="ISO date string")
    level: Optional[str] = Field(None, description="UG / MSc / Free Mover")
    semester: Optional[str] = Field(None, description="1st / 2nd")
    code: Optional[str] = Field(None, description="Course code")


# Onboarding form state

class OnboardingIdentity(BaseModel):
    first_name: str = ""
    last_name: str = ""


class OnboardingCourse(BaseModel):
    course_name: str
    course_code: str = ""


class OnboardingExchange(BaseModel):
    enabled: bool = False
    level: ExchangeLevel = ""
    destination: str = ""
    semester: ExchangeSemester = ""


class OnboardingAcademics(BaseModel):
    current_degree: str = ""
    other_degrees: List[str] = Field(default_factory=list)
    courses: List[OnboardingCourse] = Field(default_factory=list)
    exchange: OnboardingExchange = Field(default_factory=OnboardingExchange)


class OnboardingContacts(BaseModel):
    phone: str = ""
    linkedin_url: str = ""
    instagram: str = ""
    visibility: Visibility = "private"


class OnboardingPhoto(BaseModel):
    filename: str
    content_type: str
    data: bytes


class OnboardingData(BaseModel):
    identity: OnboardingIdentity = Field(default_factory=OnboardingIdentity)
    academics: OnboardingAcademics = Field(default_factory=OnboardingAcademics)
    contacts: OnboardingContacts = Field(default_factory=OnboardingContacts)
