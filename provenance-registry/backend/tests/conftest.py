import pytest
from types import SimpleNamespace

from eth_account import Account
from fastapi.testclient import TestClient

from provenance.crud import make_engine, init_db
from provenance.main import create_app
from provenance.registry import ProvenanceRegistry
from provenance.settings import Settings

START = 1_700_000_000
DAY = 24 * 3600


class FakeClock:
    def __init__(self, now: int = START):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def actors():
    return SimpleNamespace(**{
        name: Account.create().address
        for name in (
            "admin", "producer", "producer2", "inspector", "inspector2",
            "distributor", "retailer", "consumer", "stranger",
        )
    })


@pytest.fixture
def engine():
    eng = make_engine("sqlite://")
    init_db(eng)
    return eng


@pytest.fixture
def registry(engine, actors, clock):
    return ProvenanceRegistry(engine, actors.admin, clock=clock)


@pytest.fixture
def populated(registry, actors):
    registry.register_producer(actors.admin, actors.producer, "Green Valley Dairy")
    registry.register_producer(actors.admin, actors.producer2, "Hill Farm")
    registry.register_inspector(actors.admin, actors.inspector, "FoodSafe Labs")
    registry.register_inspector(actors.admin, actors.inspector2, "QualityCheck Inc")
    registry.register_distributor(actors.admin, actors.distributor, "FastFreight Logistics")
    registry.register_retailer(actors.admin, actors.retailer, "Corner Grocery")
    return registry


@pytest.fixture
def product_id(populated, actors):
    return populated.create_product(
        actors.producer, "Milk", "BATCH-001", "Dairy", START - DAY, "ipfs://QmMilkMetadata"
    )


@pytest.fixture
def settings(actors):
    return Settings(
        _env_file=None,
        ADMIN_ADDRESS=actors.admin,
        DATABASE_URL="sqlite://",
        EXPIRY_CHECK_MINUTES=0,
        PINATA_JWT="test-jwt",
    )


@pytest.fixture
def client(settings, registry):
    return TestClient(create_app(settings=settings, registry=registry))
