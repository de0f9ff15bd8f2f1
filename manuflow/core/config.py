from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql://manuflow:manuflow_pass@db:5432/manuflow"
    SECRET_KEY: str = "change-me-to-a-random-secret-key"
    ENVIRONMENT: str = "development"
    PORT: int = 8000
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 480  # 8 hours

    # Create missing tables on startup (fallback if alembic migration didn't run)
    AUTO_CREATE_TABLES: bool = True

    # Number of dependents shown when a deletion is blocked
    BLOCKED_SAMPLE_SIZE: int = 5

    model_config = {"env_file": ".env", "extra": "ignore"}

    @model_validator(mode="after")
    def fix_postgres_url(self) -> "Settings":
        # Some hosts provide postgres:// instead of postgresql://
        if self.DATABASE_URL.startswith("postgres://"):
            self.DATABASE_URL = self.DATABASE_URL.replace(
                "postgres://", "postgresql://", 1
            )
        return self


settings = Settings()
