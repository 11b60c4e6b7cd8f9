# app/repos/base.py
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from app.domain.errors import StorageConflict, StorageTimeout
from app.utils.logging import get_logger

logger = get_logger(__name__)


@contextmanager
def storage_errors(db: Session, action: str):
    """
    Tlumaczy bledy SQLAlchemy na bledy domeny i zawsze robi rollback,
    zeby kolejna proba (tenacity) startowala z czystej transakcji.
    """
    try:
        yield
    except OperationalError as e:
        db.rollback()
        logger.warning(f"{action}: storage timeout/unavailable: {e.orig}")
        raise StorageTimeout(f"{action} timed out") from e
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"{action}: concurrent write rejected: {e.orig}")
        raise StorageConflict(f"{action} conflicted with a concurrent write") from e
    except Exception:
        db.rollback()
        raise
