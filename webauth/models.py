from pydantic import BaseModel


class ChallengeResponse(BaseModel):
    transaction: str
    network_passphrase: str


class TokenResponse(BaseModel):
    token: str
