import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "auramarket")
IDENTITY_DATABASE_URL = os.getenv("IDENTITY_DATABASE_URL", "sqlite:///./sqlite.db")

SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7))

DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "CLP")
SELLER_FALLBACK_NAME = os.getenv("SELLER_FALLBACK_NAME", "Vendedor")
USER_FALLBACK_NAME = "Usuario"
DEFAULT_PAGE_SIZE = 20

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 8000))
