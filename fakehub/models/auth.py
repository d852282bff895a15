from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class _DeviceFields(BaseModel):
    trust_device: bool | None = None
    device_fingerprint: str | None = None
    device_name: str | None = None


class Register(BaseModel):
    username: str
    email: str
    password: str
    name: str | None = None


class Login(_DeviceFields):
    email: str | None = None
    username: str | None = None
    password: str = ""

    @property
    def login(self) -> str:
        return (self.email or self.username or "").strip()


class MfaVerify(_DeviceFields):
    """With ``tempToken``: second login factor. Without: confirm a pending setup."""

    model_config = ConfigDict(populate_by_name=True)

    temp_token: str | None = Field(default=None, alias="tempToken")
    code: str


class BackupCodeLogin(_DeviceFields):
    model_config = ConfigDict(populate_by_name=True)

    temp_token: str = Field(alias="tempToken")
    code: str


class MfaDisable(BaseModel):
    password: str
    code: str | None = None


class ChangePassword(BaseModel):
    current_password: str
    new_password: str
    revoke_other_sessions: bool = True


class WebAuthnRegister(BaseModel):
    credential_id: str
    public_key: str
    name: str | None = None


class WebAuthnAuthenticate(_DeviceFields):
    model_config = ConfigDict(populate_by_name=True)

    temp_token: str = Field(alias="tempToken")
    credential_id: str
    signature: str
    sign_count: int = 0


class SsoInitiate(BaseModel):
    provider: str | None = None
    email: str | None = None


class SsoCallback(BaseModel):
    state: str
    token: str
