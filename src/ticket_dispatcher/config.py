from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_env: str = "dev"

    # Numeric local parts at this domain are issue numbers, e.g. 123@issues.example.com
    ticket_dispatcher_domain: str = ""
    # Only senders from this domain (or its subdomains) are accepted
    whitelist_domain: str = ""

    github_project: str = ""
    github_token: str = ""

    # Any non-empty value keeps quoted replies, folded into a <details> block
    show_quoted_text: str = ""

    aws_region: Optional[str] = None

    log_level: str = "INFO"
    api_retry_max_attempts: int = 3
    api_retry_base_delay_seconds: float = 1.0
    api_retry_max_delay_seconds: float = 8.0

    @property
    def discard_quotes(self) -> bool:
        return not self.show_quoted_text.strip()

    @property
    def github_owner_repo(self) -> Optional[tuple[str, str]]:
        owner, _, repo = self.github_project.strip().partition("/")
        if not owner or not repo:
            return None
        return owner, repo

    def missing_required(self) -> list[str]:
        missing = []
        if not self.ticket_dispatcher_domain:
            missing.append("TICKET_DISPATCHER_DOMAIN")
        if not self.whitelist_domain:
            missing.append("WHITELIST_DOMAIN")
        return missing


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
