"""Pydantic schema for cached GitHub App installation tokens."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class InstallationCredential(BaseModel):
    """Installation-scoped access token and its expiry (timezone-aware UTC)."""

    model_config = ConfigDict(frozen=True)

    installation_id: str = Field(..., min_length=1)
    access_token: SecretStr
    expires_at: datetime

    @property
    def token(self) -> str:
        return self.access_token.get_secret_value()
