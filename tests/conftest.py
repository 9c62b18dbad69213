import os

# Unit tests never talk to Redis or a real database
os.environ.setdefault("REDIS_SETTINGS_ENABLED", "false")
os.environ.setdefault("DATABASE_URL", "sqlite://")
