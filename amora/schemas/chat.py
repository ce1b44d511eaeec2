from pydantic import BaseModel, Field
from datetime import datetime

class Message(BaseModel):
    id: str
    sender_id: str = Field(alias="senderId")
    receiver_id: str = Field(alias="receiverId")
    text: str = Field(min_length=1)
    timestamp: datetime

    model_config = {"populate_by_name": True, "frozen": True}

class ThreadSummary(BaseModel):
    id: str
    participants: list[str] = Field(min_length=2, max_length=2)
    last_message: str = Field(alias="lastMessage")
    last_message_timestamp: datetime = Field(alias="lastMessageTimestamp")

    model_config = {"populate_by_name": True, "frozen": True}

class MessageCreate(BaseModel):
    receiver_id: str = Field(alias="receiverId", min_length=1)
    text: str

    model_config = {"populate_by_name": True}

class ThreadRef(BaseModel):
    thread_id: str = Field(alias="threadId")
    participants: list[str]

    model_config = {"populate_by_name": True}
