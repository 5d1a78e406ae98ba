from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    APP_NAME: str = "Oracle League"
    API_VERSION: str = "1.0.0"

    # --- BASE DE DATOS ---
    DATABASE_URL: str = "sqlite:///./oracle_league.db"

    # --- TOKENS (se emiten fuera, aquí solo se verifican) ---
    SECRET_KEY: str = "dev-secret-change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    # --- REGLAS DE ADMISIÓN ---
    CONFIDENCE_MIN: int = 0
    CONFIDENCE_MAX: int = 100
    MAX_RATIONALE_LENGTH: int = 1000
    MIN_OPTIONS: int = 2
    MAX_OPTIONS: int = 10
    MIN_WEEK: int = 1
    MAX_WEEK: int = 18

    # --- CLASIFICACIÓN ---
    MIN_VOLUME: int = 5
    ROOKIE_TIER: str = "Rookie"
    # Ordenados de mayor a menor; el primero que se cumpla gana
    TIER_THRESHOLDS: list[tuple[str, float]] = [
        ("Legendary", 0.85),
        ("Platinum", 0.75),
        ("Gold", 0.65),
        ("Silver", 0.55),
        ("Bronze", 0.0),
    ]
    LEADERBOARD_CACHE_SECONDS: float = 30.0

    # --- RESOLUCIÓN ---
    # 0 = toda la predicción en una sola transacción
    SCORING_BATCH_SIZE: int = 0

    # --- REINTENTOS DE ALMACENAMIENTO ---
    STORAGE_MAX_RETRIES: int = 3
    STORAGE_INITIAL_BACKOFF: float = 0.05
    STORAGE_BACKOFF_MULTIPLIER: float = 2.0

    # --- LOGS ---
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    ALLOWED_ORIGINS: list[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]


settings = Settings()
