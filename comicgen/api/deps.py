from collections.abc import Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from comicgen.core.exceptions import UnknownAppError
from comicgen.core.settings import settings
from comicgen.db.session import get_db


def db_session() -> Generator[Session, None, None]:
    yield from get_db()


def require_known_app(app_name: str) -> str:
    if app_name != settings.app_name:
        raise UnknownAppError(app_name)
    return app_name


DbSessionDep = Depends(db_session)
KnownAppDep = Depends(require_known_app)
