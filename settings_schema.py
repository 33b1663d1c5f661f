from pydantic import BaseModel, Field, ValidationError


class SettingsSchema(BaseModel):
    timezone: str = "UTC"
    unit_preference: str = "metric"
    theme: str = "light"
    page_size: int = Field(default=10, ge=1)
    dedupe_interval: float = Field(default=2.0, ge=0)
    request_timeout: float = Field(default=15.0, gt=0)
    week_start: int = Field(default=0, ge=0, le=6)
    draft_path: str = "workout_draft.json"
    site_url: str = "http://localhost:8000"
    jwt_secret: str = ""
    access_token_minutes: int = 60
    refresh_token_days: int = 30
    code_minutes: int = 60
    require_email_confirmation: bool = True
    oauth_google_client_id: str = ""
    oauth_google_client_secret: str = ""
    oauth_google_authorize_url: str = "https://accounts.google.com/o/oauth2/v2/auth"
    log_level: str = "INFO"


def validate_settings(data: dict) -> None:
    try:
        SettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))
