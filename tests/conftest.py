import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from smart_account.config import NetworkConfig
from smart_account.main import SmartAccountService
from tests.utils.common_classes import (
    ENTRY_POINT,
    FACTORY,
    PAYMASTER,
    PAYMASTER_DATA,
    PRIVATE_KEY,
    FakeChain,
    create_node,
    create_rpc_app,
)
from user_ops.client import BundlerClient, ReceiptPolling
from user_ops.signer import LocalWallet
from user_ops.web3 import NodeClient


@pytest.fixture(scope="function")
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture(scope="function")
def rpc_app(chain):
    return create_rpc_app(chain)


@pytest_asyncio.fixture(scope="function")
async def node(rpc_app) -> NodeClient:
    node = create_node(rpc_app)
    yield node
    await node.aclose()


@pytest_asyncio.fixture(scope="function")
async def bundler(rpc_app) -> BundlerClient:
    client = AsyncClient(
        transport=ASGITransport(app=rpc_app), base_url="http://bundler"
    )
    bundler = BundlerClient(client, "http://bundler/")
    yield bundler
    await bundler.aclose()


@pytest.fixture(scope="function")
def network(chain) -> NetworkConfig:
    return NetworkConfig(
        chain_id=chain.chain_id,
        rpc_url="http://node/",
        bundler_url="http://bundler/",
        entry_point=ENTRY_POINT,
        entry_point_version=chain.entry_point_version,
        account_factory=FACTORY,
        paymaster=PAYMASTER,
        paymaster_data=PAYMASTER_DATA,
    )


@pytest.fixture(scope="function")
def wallet() -> LocalWallet:
    return LocalWallet(PRIVATE_KEY)


@pytest.fixture(scope="function")
def polling() -> ReceiptPolling:
    return ReceiptPolling(mode="fixed", delay=0)


@pytest.fixture(scope="function")
def service(network, wallet, node, bundler, polling) -> SmartAccountService:
    return SmartAccountService(network, wallet, node, bundler, polling)
