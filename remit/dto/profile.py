from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from remit.utils.time import as_utc


class ProfileIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    full_name: str = Field(min_length=1, max_length=200)
    id_number: str = Field(pattern=r"^[0-9]{13}$")
    account_number: str = Field(pattern=r"^[0-9]{8,12}$")
    username: str = Field(pattern=r"^[a-zA-Z0-9._-]{3,20}$")


class ProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    full_name: str
    id_number: str
    account_number: str
    username: str
    is_verified: bool
    created_at: datetime
    updated_at: datetime

    @field_serializer("created_at", "updated_at", when_used="json")
    def serialize_utc(self, value: datetime) -> datetime:
        return as_utc(value)
