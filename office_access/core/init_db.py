"""
Database initialization script.
Creates all tables and optionally seeds the first tenant admin.
"""

from sqlalchemy import inspect
from office_access.core.database import engine, Base, SessionLocal
from office_access.core.auth import AuthUtils
from office_access.models.user import User, UserType, UserStatus
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def init_db():
    """
    Initialize the database by creating all tables.
    """
    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully!")


def seed_initial_data():
    """
    Seed the database with a default tenant admin and print a token for it.
    """
    db = SessionLocal()

    try:
        existing_admins = db.query(User).filter(User.user_type == UserType.TENANT_ADMIN).count()

        if existing_admins == 0:
            logger.info("No tenant admin found. Creating default tenant admin...")

            default_admin = User(
                username="admin",
                name="System Administrator",
                user_type=UserType.TENANT_ADMIN,
                status=UserStatus.ACTIVE,
            )

            db.add(default_admin)
            db.commit()
            db.refresh(default_admin)

            token = AuthUtils.create_access_token(
                data={"sub": default_admin.id, "user_type": default_admin.user_type.value}
            )
            logger.info("Default tenant admin created successfully!")
            logger.info(f"User ID: {default_admin.id}")
            logger.info(f"Bearer token: {token}")
        else:
            logger.info(f"Database already has {existing_admins} tenant admin(s). Skipping seed data.")

    except Exception as e:
        logger.error(f"Error seeding initial data: {e}")
        db.rollback()
        raise
    finally:
        db.close()


def check_tables():
    """
    Check which tables exist in the database.
    """
    inspector = inspect(engine)
    tables = inspector.get_table_names()

    logger.info("Existing tables in database:")
    for table in tables:
        logger.info(f"  - {table}")

    return tables


if __name__ == "__main__":
    logger.info("=" * 50)
    logger.info("Database Initialization Script")
    logger.info("=" * 50)

    check_tables()
    init_db()
    seed_initial_data()
    check_tables()

    logger.info("=" * 50)
    logger.info("Database initialization complete!")
    logger.info("=" * 50)
