from typing import Annotated, Generator

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from services.accounting import AccountingCore


def get_session(request: Request) -> Generator[Session, None, None]:
    with request.app.state.sessionmaker() as session:
        yield session


def get_accounting_core(session: Annotated[Session, Depends(get_session)]) -> AccountingCore:
    return AccountingCore(session)
