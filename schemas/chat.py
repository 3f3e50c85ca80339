from pydantic import BaseModel, ConfigDict, Field


class Message(BaseModel):
    # Stored and broadcast as {"message": ..., "user": ...}
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    text: str = Field(alias="message")
    author: str = Field(alias="user")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)

class UserRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    user: str = Field(min_length=1)

class PostMessageRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    user: str = Field(min_length=1)
    msg: str = Field(min_length=1)

class AckResponse(BaseModel):
    status: int = 200
    message: str
