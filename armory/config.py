from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import List, Optional


class Settings(BaseSettings):
    # Database Configuration
    database_url: Optional[str] = None
    db_username: Optional[str] = None
    db_password: Optional[str] = None
    db_host: str = "localhost"
    db_port: str = "5432"
    db_name: Optional[str] = None

    # Authentication
    secret_key: str = "change-me-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: Optional[int] = 60 * 24
    bcrypt_rounds: int = 12
    allow_registration: bool = False

    @field_validator('algorithm', mode='before')
    @classmethod
    def parse_algorithm(cls, v):
        if v is None or v == '':
            return "HS256"
        return v

    @field_validator('access_token_expire_minutes', mode='before')
    @classmethod
    def parse_token_expire(cls, v):
        if v is None or v == '':
            return 60 * 24
        return int(v)

    # Rate limiting
    rate_limit_enabled: bool = True
    login_rate_limit: str = "5/minute"

    # HTTP
    cors_origins: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]
    default_page_size: int = 20
    max_page_size: int = 100

    log_level: str = "INFO"

    @property
    def database_connection_url(self) -> str:
        """Build database URL from individual components or use direct URL"""
        if all([self.db_username, self.db_password, self.db_host, self.db_port, self.db_name]):
            return f"postgresql://{self.db_username}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"
        elif self.database_url:
            return self.database_url
        else:
            return "sqlite:///./armory.db"

    class Config:
        env_file = ".env"


settings = Settings()
