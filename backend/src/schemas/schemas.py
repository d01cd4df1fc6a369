from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from utilities import UNIVERSE


class SubmitEventRequest(BaseModel):
    ''' Inbound picture event, already extracted from the webhook payload.'''

    model_config = ConfigDict(populate_by_name=True)

    city: str = Field(min_length=1)
    pic_ref: str = Field(alias="picRef", min_length=1)

    @field_validator("city")
    @classmethod
    def city_not_reserved(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("city must not be blank")
        if v == UNIVERSE:
            raise ValueError(f"'{UNIVERSE}' is reserved for the global channel")
        return v


class WSIncoming(BaseModel):
    type: str  # join|ping
    city: Optional[str] = None
    request_id: Optional[str] = None
