import os

from dotenv import load_dotenv

load_dotenv()

# Store
STORE_NAME = os.getenv("STORE_NAME", "Alpine Guardian Systems")
PRIMARY_CURRENCY = os.getenv("PRIMARY_CURRENCY", "USD")
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*").split(",")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "patrol_store")

# Auth
JWT_SECRET = os.getenv("JWT_SECRET", "devsecret_change_me")
JWT_EXP_MIN = int(os.getenv("JWT_EXP_MIN", "60"))
# "metadata" reads the role from the auth user's metadata, "account" from the account table
ROLE_SOURCE = os.getenv("ROLE_SOURCE", "account")

# Payments
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_PUBLISHABLE_KEY = os.getenv("STRIPE_PUBLISHABLE_KEY")
SITE_URL = os.getenv("SITE_URL", "http://localhost:8000").rstrip("/")
FUNCTIONS_URL = os.getenv("FUNCTIONS_URL", f"{SITE_URL}/functions/v1").rstrip("/")

# Object storage
STORAGE_DIR = os.getenv("STORAGE_DIR", "storage")
PUBLIC_STORAGE_URL = os.getenv("PUBLIC_STORAGE_URL", f"{SITE_URL}/storage/v1/object/public").rstrip("/")
