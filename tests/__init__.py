import os

# Settings are loaded at import time and refuse weak secrets.
os.environ.setdefault("JWT_SECRET", "unit-test-secret-0123456789abcdef0123456789")
os.environ.setdefault("MONGO_URI", "mongodb://localhost:27017/simlab_test")
