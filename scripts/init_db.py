import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.config import settings
from app.db import create_db_and_tables

if __name__ == "__main__":
    print(f"Creating asset and snapshot tables in {settings.DATABASE_URL.split('@')[-1]}...")
    create_db_and_tables()
    print("Tables created successfully!")
