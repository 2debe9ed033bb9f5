from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from api.api import create_app
from db.models import Base
from domain.inventory import CostBasisEngine
from domain.ledger import Organization, Wallet
from services.accounting import AccountingCore
from tests.constants import ETHEREUM, ORG, TREASURY_WALLET
from tests.helpers.time_utils import DEFAULT_TIME_GEN

# A single shared connection keeps the in-memory database visible to the API test client's worker thread.
engine: Engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
session_factory = sessionmaker(engine)


@pytest.fixture(scope="function")
def test_session(reset_db: None) -> Generator[Session, None, None]:
    with session_factory() as session:
        yield session


@pytest.fixture(scope="function", autouse=True)
def reset_db() -> Generator[None, None, None]:
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture(autouse=True)
def _reset_default_time_gen() -> None:
    DEFAULT_TIME_GEN.reset()


@pytest.fixture(scope="function")
def cost_basis_engine() -> CostBasisEngine:
    return CostBasisEngine()


@pytest.fixture(scope="function")
def core(test_session: Session) -> AccountingCore:
    return AccountingCore(test_session)


@pytest.fixture(scope="function")
def organization(core: AccountingCore) -> Organization:
    return core.create_organization(Organization(id=ORG, name="Treasury Test Org"))


@pytest.fixture(scope="function")
def wallet(core: AccountingCore, organization: Organization) -> Wallet:
    return core.create_wallet(
        Wallet(id=TREASURY_WALLET, organization_id=organization.id, chain=ETHEREUM, address="0xTreasury")
    )


@pytest.fixture(scope="function")
def client() -> Generator[TestClient, None, None]:
    with TestClient(create_app(session_factory)) as test_client:
        yield test_client
