import os

# Keep the module-level app off MongoDB while tests import backend.server
os.environ.setdefault("STORAGE_BACKEND", "memory")
