import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    def __init__(self):
        self.database_url = os.getenv(
            "SQLALCHEMY_DATABASE_URL", "sqlite:///./library.db"
        )
        # Days past borrowTo before a borrowing is reported as overdue
        self.overdue_grace_days = int(os.getenv("OVERDUE_GRACE_DAYS", "0"))
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        self.host = os.getenv("HOST", "0.0.0.0")
        self.port = int(os.getenv("PORT", "8000"))


settings = Settings()
