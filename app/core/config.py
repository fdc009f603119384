from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, populate_by_name=True)

    # App settings
    PROJECT_NAME: str = "FinanceTracker"
    API_PREFIX: str = "/api"
    DEBUG: bool = Field(default=False)
    LOG_LEVEL: str = Field(default="INFO")
    CORS_ORIGINS: List[str] = Field(default_factory=lambda: ["*"])

    # DynamoDB
    DYNAMO_REGION: str = Field(default="eu-west-1")
    DYNAMO_ENDPOINT_URL: Optional[str] = Field(default=None)  # e.g. http://localhost:8000 for DynamoDB Local
    DYNAMO_CREATE_TABLES: bool = Field(default=False)
    DYNAMO_USERS_TABLE: str = Field(default="finance-users", validation_alias="DYNAMO_TABLE_USERS")
    DYNAMO_BUDGETS_TABLE: str = Field(default="finance-monthly-budgets", validation_alias="DYNAMO_TABLE_BUDGETS")
    DYNAMO_FUNDS_TABLE: str = Field(default="finance-funds", validation_alias="DYNAMO_TABLE_FUNDS")
    DYNAMO_TRANSACTIONS_TABLE: str = Field(
        default="finance-fund-transactions", validation_alias="DYNAMO_TABLE_TRANSACTIONS"
    )

    # JWT Authentication
    JWT_SECRET_KEY: str = Field(
        default="dev-only-secret-change-me",
        validation_alias="JWT_SECRET",
    )
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRY_HOURS: int = Field(default=24)


settings = Settings()
