from pydantic import BaseModel, ConfigDict, Field


class Message(BaseModel):
    '''A client-submitted message. Frozen: never mutated after publish.

    Strict, so "1000" or 1000.0 is not taken for a ts and numbers are not
    taken for strings.
    '''

    model_config = ConfigDict(frozen=True, populate_by_name=True, strict=True)

    client_id: str = Field(alias="clientId")
    id: str
    # sender wall clock (unix seconds), not reconciled with server time
    timestamp: int = Field(alias="ts", ge=0)
    # opaque to the hub, usually JSON text
    payload: str


class InitEnvelope(BaseModel):
    client_id: str = Field(alias="clientId")
    history: list[Message]
