import logging
import os
import pathlib
import sys
import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import rentflow`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from rentflow.address import Pubkey  # noqa: E402
from rentflow.config import ConfigManager  # noqa: E402
from rentflow.context import FixedClock, InvocationContext  # noqa: E402
from rentflow.events import EventBus  # noqa: E402
from rentflow.program import LeaseProgram  # noqa: E402
from rentflow.security import Keypair  # noqa: E402
from rentflow.store import InMemoryRecordStore  # noqa: E402

PROGRAM_ID = "RentF1ow11111111111111111111111111111111111"


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: slow correctness tests (skipped unless RENTFLOW_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    run_slow = _env_flag('RENTFLOW_RUN_SLOW')

    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set RENTFLOW_RUN_SLOW=1 to enable'))


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch):
    """Fresh configuration and logging for every test."""
    for key in list(os.environ):
        if key.startswith("RENTFLOW_") and key != "RENTFLOW_RUN_SLOW":
            monkeypatch.delenv(key, raising=False)
    ConfigManager().reset()
    yield
    ConfigManager().reset()
    root = logging.getLogger("rentflow")
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.propagate = True
    root.setLevel(logging.NOTSET)


@pytest.fixture
def program_id() -> Pubkey:
    return Pubkey.from_string(PROGRAM_ID)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(1_000)


@pytest.fixture
def store(program_id) -> InMemoryRecordStore:
    return InMemoryRecordStore(program_id)


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def program(store, bus) -> LeaseProgram:
    return LeaseProgram(store, event_bus=bus, namespace_tag="lease")


@pytest.fixture
def manager() -> Keypair:
    return Keypair.from_seed(bytes([1]) * 32)


@pytest.fixture
def tenant() -> Keypair:
    return Keypair.from_seed(bytes([2]) * 32)


@pytest.fixture
def stranger() -> Keypair:
    return Keypair.from_seed(bytes([3]) * 32)


@pytest.fixture
def as_signer(clock):
    """Build an invocation context for a keypair on the shared clock."""
    def make(keypair: Keypair) -> InvocationContext:
        return InvocationContext(signer=keypair.identity, clock=clock)
    return make
