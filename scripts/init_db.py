# scripts/init_db.py  (run from the project root: python -m scripts.init_db)

from core.config import load_settings
from core.database import create_db_engine, init_db
from core.logging_setup import configure_logging


def main():
    settings = load_settings()
    configure_logging(settings.log_level)
    if settings.uses_appwrite:
        print("INTAKE_BACKEND is appwrite; collections are managed in the Appwrite console.")
        return

    print("Creating database tables...")
    init_db(create_db_engine(settings.database_url))
    print(f"Database initialized successfully at {settings.database_url}")


if __name__ == "__main__":
    main()
