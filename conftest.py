import os

# Tests run against the in-process store unless a test builds its own.
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_smartorder.db")
