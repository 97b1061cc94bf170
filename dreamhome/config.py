from functools import lru_cache
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # Base configuration
    APP_NAME: str = "DreamHome AI API"
    DEBUG: bool = False

    # Server configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Logging configuration
    LOG_LEVEL: str = "INFO"

    # CORS configuration
    CORS_ORIGINS: str = ""  # Empty by default, set to comma-separated list of domains or "*" for all
    CORS_METHODS: list = ["*"]
    CORS_HEADERS: list = ["*"]

    # Environment-specific settings (for dynamic behavior)
    ENVIRONMENT: str = "development"  # Default to development

    # Gemini configuration (prompt planning)
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.5-flash"

    # Image rendering backend: "nano_banana" or "openai"
    IMAGE_PROVIDER: str = "nano_banana"
    PROMPT_SUFFIX: str = ", photorealistic, 8k, highly detailed"
    HTTP_TIMEOUT_SECONDS: float = 60.0

    # Nano Banana (kie.ai) configuration
    NANO_BANANA_API_KEY: str = ""
    NANO_BANANA_BASE_URL: str = "https://api.kie.ai/api/v1/jobs"
    NANO_BANANA_MODEL: str = "google/nano-banana"
    NANO_BANANA_OUTPUT_FORMAT: str = "png"
    NANO_BANANA_POLL_INTERVAL: float = 2.0
    NANO_BANANA_MAX_POLLS: int = 60

    # OpenAI API configuration
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-image-1"

    # Generation defaults
    DEFAULT_SHOT_COUNT: int = 5
    DEFAULT_ASPECT_RATIO: str = "16:9"

    # Rate limit retry policies (wait before attempt n+1 = backoff * n)
    SINGLE_MAX_ATTEMPTS: int = 3
    SINGLE_BACKOFF_SECONDS: float = 5.0
    BATCH_MAX_ATTEMPTS: int = 4
    BATCH_BACKOFF_SECONDS: float = 10.0

    # Throttling between requests
    INTER_REQUEST_DELAY_SECONDS: float = 2.0
    INTER_RECORD_DELAY_SECONDS: float = 2.0

    # In-memory run registry
    MAX_RETAINED_RUNS: int = 20


    class Config:
        env_file = ".env"  # Single .env file for all environments
        case_sensitive = True
        extra = "ignore"  # Allow extra env vars not defined in Settings

@lru_cache()
def get_settings():
    """
    Function to load settings based on the environment from the `.env` file.
    """
    settings = Settings()  # Load the settings from the .env file

    # Adjust settings dynamically based on the environment
    if settings.ENVIRONMENT.lower() == "production":
        settings.DEBUG = False
        settings.LOG_LEVEL = "INFO"
        # Parse CORS origins from the environment string
        if settings.CORS_ORIGINS:
            # Remove quotes if present
            cors_str = settings.CORS_ORIGINS.strip('"').strip("'")
            if cors_str == "*":
                settings.CORS_ORIGINS = []  # Disallow "*" in production
            else:
                settings.CORS_ORIGINS = [origin.strip() for origin in cors_str.split(",") if origin.strip()]
        else:
            settings.CORS_ORIGINS = []  # No CORS origins allowed if not specified
        settings.CORS_HEADERS = [
            "Content-Type",   # For application/json and multipart uploads
            "Accept",         # For content negotiation
            "Origin",         # Required for CORS
            "X-Requested-With"  # For AJAX requests
        ]
    else:
        settings.DEBUG = True
        settings.LOG_LEVEL = "DEBUG"
        # Allow localhost origins for development
        settings.CORS_ORIGINS = [
            "http://localhost:5000",
            "http://127.0.0.1:5000",
            "http://localhost:3000",  # Common React dev port
            "http://localhost:5173",  # Common Vite dev port
        ]

    return settings

# Create a settings instance
settings = get_settings()
