"""
Prep — runtime configuration.

Everything comes from the process environment, optionally seeded from a
`.env` file in the working directory.  Supabase is used whenever both
SUPABASE_URL and SUPABASE_KEY are present; otherwise records are kept in a
local JSON file (PREP_DATA_FILE).
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


@dataclass
class Settings:
    secret_key:      str
    supabase_url:    str
    supabase_key:    str
    data_file:       str
    app_url:         str
    smtp_server:     str
    smtp_port:       int
    smtp_timeout:    float
    sender_email:    Optional[str]
    sender_password: Optional[str]
    log_file:        Optional[str]
    log_level:       str

    @property
    def use_supabase(self) -> bool:
        if not self.supabase_url or not self.supabase_key:
            return False
        return "your-project-ref" not in self.supabase_url

    @property
    def email_enabled(self) -> bool:
        return bool(self.sender_email and self.sender_password)


def load_settings() -> Settings:
    return Settings(
        secret_key      = os.environ.get("SECRET_KEY", "prep_dev_secret"),
        supabase_url    = os.environ.get("SUPABASE_URL", ""),
        supabase_key    = os.environ.get("SUPABASE_KEY", ""),
        data_file       = os.environ.get("PREP_DATA_FILE", os.path.join("data", "prep_store.json")),
        app_url         = os.environ.get("APP_URL", "http://localhost:8000"),
        smtp_server     = os.environ.get("SMTP_SERVER", "smtp.gmail.com"),
        smtp_port       = int(os.environ.get("SMTP_PORT", "587")),
        smtp_timeout    = float(os.environ.get("SMTP_TIMEOUT", "10")),
        sender_email    = os.environ.get("SENDER_EMAIL"),
        sender_password = os.environ.get("SENDER_PASSWORD"),
        log_file        = os.environ.get("LOG_FILE") or None,
        log_level       = os.environ.get("LOG_LEVEL", "INFO").upper(),
    )


settings = load_settings()
