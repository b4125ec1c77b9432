import logging

from sqlalchemy import select, text

from app.config import settings
from app.db import SessionLocal, engine
from app.logging_config import configure_logging
from app.models import Base, Principal, PrincipalRole
from app.security.passwords import hash_password
from app.services.rate_table_service import seed_rate_tables

logger = logging.getLogger(__name__)


def create_schema() -> None:
    with engine.begin() as conn:
        conn.execute(text('CREATE EXTENSION IF NOT EXISTS citext'))
    Base.metadata.create_all(engine)


def seed() -> None:
    create_schema()
    with SessionLocal() as db:
        added = seed_rate_tables(db)

        for username, password, role in (
            ('admin', 'adminpass', PrincipalRole.ADMIN),
            ('staff', 'staffpass', PrincipalRole.STAFF),
        ):
            existing = db.execute(select(Principal).where(Principal.username == username)).scalar_one_or_none()
            if not existing:
                db.add(
                    Principal(
                        username=username,
                        password_hash=hash_password(password),
                        role=role,
                        active=True,
                    )
                )

        db.commit()
    logger.info('Seed complete', extra={'rate_rows_added': added})


if __name__ == '__main__':
    configure_logging(settings.log_level, settings.log_json)
    seed()
    print('Seed data inserted/verified.')
