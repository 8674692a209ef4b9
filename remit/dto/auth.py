from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from remit.utils.time import as_utc


class LoginIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: str = Field(min_length=1, max_length=64)


class SessionOut(BaseModel):
    success: bool = True
    user_id: str
    token: str
    expires_at: datetime

    @field_serializer("expires_at", when_used="json")
    def serialize_utc(self, value: datetime) -> datetime:
        return as_utc(value)


class UserOut(BaseModel):
    id: str
