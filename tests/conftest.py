import os

# Settings are read at import time; give the test run a self-contained environment.
os.environ.setdefault("DATABASE_URL", "sqlite:///./tripo_test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("GATEWAY_SANDBOX", "true")
os.environ.setdefault("PUSH_GATEWAY_URL", "")
