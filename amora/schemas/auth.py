from pydantic import BaseModel

class Credentials(BaseModel):
    email: str
    password: str

class Identity(BaseModel):
    uid: str
    email: str

    model_config = {"frozen": True}

class SessionToken(BaseModel):
    token: str
    uid: str
    email: str
