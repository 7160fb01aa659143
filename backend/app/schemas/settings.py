from pydantic import BaseModel, EmailStr, Field


class GeneralSettings(BaseModel):
    site_name: str = Field(..., min_length=1, max_length=255)
    site_description: str | None = Field(None, max_length=1000)
    admin_email: EmailStr
    users_require_approval: bool = True


class SecuritySettings(BaseModel):
    password_expiry_days: int = Field(90, ge=0, le=365)
    session_timeout_minutes: int = Field(60, ge=1, le=1440)
    two_factor_authentication: bool = False


class EmailSettings(BaseModel):
    email_notifications: bool = True
    welcome_email: bool = True
    approval_required_email: bool = True


class SystemSettingsUpdate(BaseModel):
    general: GeneralSettings
    security: SecuritySettings | None = None
    email: EmailSettings | None = None


class SystemSettingsResponse(BaseModel):
    general: dict
    security: dict
    email: dict
