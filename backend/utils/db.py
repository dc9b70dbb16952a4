from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from core.errors import CredentialStoreError, DuplicateEmailError


async def safe_commit(session, error_message: str = "Database commit failed"):
    """Commit, rolling back and translating driver errors on failure."""
    try:
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        raise DuplicateEmailError(error_message) from e
    except SQLAlchemyError as e:
        await session.rollback()
        raise CredentialStoreError(error_message) from e
