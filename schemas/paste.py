from typing import Optional

from pydantic import AliasChoices, BaseModel, Field, StrictStr

from constants import DEFAULT_TTL_SECONDS


class StoreRequest(BaseModel):
    # `compressedData` / `ttl` are the field names older clients send
    ciphertext: StrictStr = Field(..., min_length=1, validation_alias=AliasChoices("ciphertext", "compressedData"))
    ttl_seconds: Optional[int] = Field(DEFAULT_TTL_SECONDS, validation_alias=AliasChoices("ttlSeconds", "ttl_seconds", "ttl"))


class StoreResponse(BaseModel):
    id: str


class RetrieveResponse(BaseModel):
    ciphertext: str
