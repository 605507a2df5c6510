import os
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB connection
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'skincare_db')

# "mongo" in production, "memory" for local runs without a database
STORAGE_BACKEND = os.environ.get('STORAGE_BACKEND', 'mongo')

# JWT Configuration
JWT_SECRET = os.environ.get('JWT_SECRET', 'skincare-secret-key-change-in-production')
JWT_ALGORITHM = 'HS256'
JWT_EXPIRATION_HOURS = int(os.environ.get('JWT_EXPIRATION_HOURS', 24 * 7))  # 1 week

# Calendar days (routine dates, streaks) are computed in this timezone
APP_TIMEZONE = os.environ.get('APP_TIMEZONE', 'UTC')

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
