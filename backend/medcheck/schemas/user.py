from pydantic import BaseModel, Field, field_validator
from typing import Optional

DEFAULT_ROLE = "doctor"
# bcrypt only looks at the first 72 bytes of a secret
MAX_PASSWORD_BYTES = 72


class UserCredentials(BaseModel):
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1)

    @field_validator("username")
    @classmethod
    def strip_username(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("username must not be blank")
        return value


class UserRegistration(UserCredentials):
    @field_validator("password")
    @classmethod
    def check_password_length(cls, value: str) -> str:
        if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes")
        return value


class UserCreate(BaseModel):
    """Storage insert shape; `password` is already a bcrypt hash."""
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1)


class UserRecord(BaseModel):
    id: int
    username: str
    password: str
    role: str = DEFAULT_ROLE
    # which storage backend issued this account: "database" or "memory"
    backend: str = Field(default="memory", exclude=True)

    class Config:
        from_attributes = True


class UserResponse(BaseModel):
    id: int
    username: str
    role: str

    class Config:
        from_attributes = True


class UserEnvelope(BaseModel):
    user: Optional[UserResponse] = None
