from typing import Optional
from pydantic import BaseModel, Field, ConfigDict, StrictInt
from pydantic.alias_generators import to_camel


class WalletRecord(BaseModel):
    address: str
    tokens: int = 0
    punches: int = 0
    bonus_punches: int = 0
    referred_by: str = ""
    character_name: str = ""
    win_count: int = 0

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    @property
    def has_referrer(self) -> bool:
        # A referrer created by a bonus points at itself; that marker is not a real referral.
        return bool(self.referred_by) and self.referred_by != self.address


class ProgressReport(BaseModel):
    tokens: StrictInt = 0
    punches: StrictInt = 0
    referred_by: str = ""
    character_name: str = ""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VerifiedCredential(BaseModel):
    address: str = ""
    report: ProgressReport = Field(default_factory=ProgressReport)


class SubmitProgressRequest(BaseModel):
    token: str = Field(..., description="Signed credential carrying wallet_address and progress data")

    model_config = ConfigDict(json_schema_extra={
        "example": {"token": "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9..."}
    })


class SubmitProgressResponse(BaseModel):
    message: str
    address: str
    created: bool


class FinishRequest(BaseModel):
    address: str = Field(..., description="Wallet that finished the game")
    win_delta: StrictInt = Field(default=1, description="Wins to add to the wallet")

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, json_schema_extra={
        "example": {"address": "0x8f3a...c21d", "winDelta": 1}
    })


class WalletDetailsResponse(BaseModel):
    address: str
    wallet: Optional[WalletRecord] = None


class LeaderboardResponse(BaseModel):
    limit: int
    entries: list[WalletRecord]
