# services/api/settings.py
from pydantic_settings import BaseSettings
from pydantic import AliasChoices, ConfigDict, Field
import base64
import tempfile
from typing import List, Optional
from pathlib import Path

class Settings(BaseSettings):
    # Storage settings
    # "sqlite" | "json" | "sheets"
    storage_backend: str = "sqlite"
    db_url: str = "sqlite:///data/selections.db"
    json_data_dir: str = "data"
    google_sa_json: str = ""
    google_sa_json_base64: str = ""
    sheets_spreadsheet_id: str = ""

    # CORS settings
    allowed_origins: str = "*"

    # Email settings
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    # TRUE = implicit TLS (port 465). FALSE = plain connect + STARTTLS when offered.
    smtp_secure: bool = False
    smtp_user: str = ""
    smtp_password: str = Field(
        default="",
        validation_alias=AliasChoices("smtp_password", "smtp_pass"),
    )
    email_from: Optional[str] = Field(
        default=None,
        description="Sender address; falls back to SMTP_USER",
    )
    smtp_from_name: str = "Therapy Tools"

    # Public base URL used to build the /view/<selectionId> links in emails
    base_url: str = "http://localhost:3000"

    # Scratch space for per-request job directories (empty = system temp dir)
    scratch_root: str = ""

    # Upstream document fetch
    fetch_timeout_seconds: float = 30.0

    # ---- Rasterization ----
    # Server-side email images: 300 DPI, longest side capped at 2000px
    raster_dpi: int = 300
    raster_max_px: int = 2000

    # Viewer renders at a fixed scale (1.5 ≈ 108 DPI)
    viewer_scale: float = 1.5
    # Pause between downloads in the viewer's "download all"
    download_delay_seconds: float = 0.5

    model_config = ConfigDict(
        # Always load .env from the same folder as this settings.py
        env_file=str(Path(__file__).resolve().parent / ".env"),
        extra="ignore",
        populate_by_name=True,
    )

    def resolved_google_sa_json(self) -> str:
        """
        Return the path to the service account JSON.
        If GOOGLE_SA_JSON_BASE64 is set, decode it to a temp file.
        Otherwise return GOOGLE_SA_JSON path.
        """
        if self.google_sa_json_base64:
            decoded = base64.b64decode(self.google_sa_json_base64)
            temp_file = tempfile.NamedTemporaryFile(mode='w', delete=False, suffix='.json')
            temp_file.write(decoded.decode('utf-8'))
            temp_file.close()
            return temp_file.name

        return self.google_sa_json

    def resolved_scratch_root(self) -> Path:
        if self.scratch_root:
            return Path(self.scratch_root)
        return Path(tempfile.gettempdir())

    def resolved_from_email(self) -> str:
        return self.email_from or self.smtp_user

    def get_origins_list(self) -> List[str]:
        """Parse comma-separated origins into a list."""
        if not self.allowed_origins:
            return ["*"]
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


_settings_instance = None

def get_settings() -> Settings:
    """Singleton pattern for settings."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
