from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from datetime import datetime
from app.core.constants import UserRole

class UserCreate(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=2, max_length=100)
    password: str = Field(..., min_length=8, max_length=72)

class UserLogin(BaseModel):
    email: EmailStr
    password: str

class UserResponse(BaseModel):
    id: int
    email: str
    is_active: bool
    name: str | None  # ← Nullable in response
    role: str
    department: Optional[str] = None
    manager_id: Optional[int] = None

    model_config = {"from_attributes": True}  # ✅ Pydantic v2 style

class UserSummary(BaseModel):
    id: int
    email: str
    display_name: str
    role: str

    model_config = {"from_attributes": True}

class RoleUpdate(BaseModel):
    role: UserRole

class ManagerUpdate(BaseModel):
    manager_id: Optional[int] = None

class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str
    user: UserResponse
