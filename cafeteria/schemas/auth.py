import uuid

from pydantic import BaseModel, EmailStr, Field

from cafeteria.models.profile import Role


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)
    full_name: str = Field(min_length=1, max_length=200)
    role: Role = Role.STUDENT
    student_id: str | None = None
    department: str | None = None
    staff_id: str | None = None
    cafeteria_name: str | None = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class ProfileResponse(BaseModel):
    id: uuid.UUID
    email: str
    full_name: str
    role: Role
    student_id: str | None
    department: str | None
    staff_id: str | None
    cafeteria_name: str | None
    avatar_url: str | None

    model_config = {"from_attributes": True}
