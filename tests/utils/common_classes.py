from dataclasses import dataclass, field
from typing import Optional

import eth_abi
from fastapi import FastAPI, Request
from httpx import ASGITransport, AsyncClient
from web3 import AsyncWeb3, Web3
from web3.providers.async_base import AsyncJSONBaseProvider

from smart_account.constants import EntryPointVersion
from user_ops.address import derive_create2_address
from user_ops.web3 import NodeClient

ENTRY_POINT = Web3.to_checksum_address("0x" + "e1" * 20)
FACTORY = Web3.to_checksum_address("0x" + "fa" * 20)
PAYMASTER = Web3.to_checksum_address("0x" + "ba" * 20)
TARGET = Web3.to_checksum_address("0x" + "7a" * 20)
TRANSACTION_HASH = "0x" + "ab" * 32

# Hardhat's first development account.
PRIVATE_KEY = (
    "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
)
OWNER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
PAYMASTER_DATA = bytes.fromhex("c0ffee")

ACCOUNT_CODE = bytes.fromhex("6080604052")


def selector(signature: str) -> bytes:
    return bytes(Web3.keccak(text=signature)[:4])


CREATE_ACCOUNT_SELECTOR = selector("createAccount(address,uint256)")
GET_NONCE_SELECTOR = selector("getNonce(address,uint192)")
GET_SENDER_ADDRESS_SELECTOR = selector("getSenderAddress(bytes)")
SENDER_ADDRESS_RESULT_SELECTOR = selector("SenderAddressResult(address)")


def account_address(owner: str, salt: int = 0) -> str:
    """Address the fake factory deploys the account of `owner` to."""
    return derive_create2_address(
        FACTORY, salt, ACCOUNT_CODE + Web3.to_bytes(hexstr=owner)
    )


def _word(value) -> bytes:
    if isinstance(value, str):
        value = int(value, 16) if value != "0x" else 0
    return value.to_bytes(32, "big")


def _keccak(hex_value: str) -> bytes:
    return bytes(Web3.keccak(hexstr=hex_value))


def get_user_op_hash(
    user_op: dict, entry_point: str, chain_id: int, version
) -> str:
    """
    EntryPoint `getUserOpHash` of a wire-format UserOperation, packed word
    by word the way the EntryPoint contracts do it.
    """
    if version == EntryPointVersion.V06:
        init_code = user_op["initCode"]
        paymaster_and_data = user_op["paymasterAndData"]
        gas = [
            _word(user_op["callGasLimit"]),
            _word(user_op["verificationGasLimit"]),
            _word(user_op["preVerificationGas"]),
            _word(user_op["maxFeePerGas"]),
            _word(user_op["maxPriorityFeePerGas"]),
        ]
    else:
        init_code = "0x"
        if user_op.get("factory"):
            init_code = user_op["factory"] + user_op["factoryData"][2:]
        paymaster_and_data = "0x"
        if user_op.get("paymaster"):
            paymaster_and_data = (
                user_op["paymaster"]
                + _word(user_op["paymasterVerificationGasLimit"])[16:].hex()
                + _word(user_op["paymasterPostOpGasLimit"])[16:].hex()
                + user_op["paymasterData"][2:]
            )
        gas = [
            _word(user_op["verificationGasLimit"])[16:]
            + _word(user_op["callGasLimit"])[16:],
            _word(user_op["preVerificationGas"]),
            _word(user_op["maxPriorityFeePerGas"])[16:]
            + _word(user_op["maxFeePerGas"])[16:],
        ]

    packed = (
        _word(user_op["sender"])
        + _word(user_op["nonce"])
        + _keccak(init_code)
        + _keccak(user_op["callData"])
        + b"".join(gas)
        + _keccak(paymaster_and_data)
    )
    return "0x" + (
        bytes(
            Web3.keccak(
                bytes(Web3.keccak(packed))
                + _word(entry_point)
                + _word(chain_id)
            )
        ).hex()
    )


class ASGIProvider(AsyncJSONBaseProvider):
    """web3 provider posting JSON-RPC requests to an in-process app."""

    def __init__(self, app: FastAPI, endpoint_uri: str):
        super().__init__()
        self.endpoint_uri = endpoint_uri
        self.client = AsyncClient(
            transport=ASGITransport(app=app), base_url=endpoint_uri
        )

    async def make_request(self, method, params):
        response = await self.client.post(
            self.endpoint_uri,
            content=self.encode_rpc_request(method, params),
            headers={"Content-Type": "application/json"},
        )
        return self.decode_rpc_response(response.content)

    async def disconnect(self):
        await self.client.aclose()


def create_node(app: FastAPI) -> NodeClient:
    return NodeClient(AsyncWeb3(ASGIProvider(app, "http://node/")))


class RpcFault(Exception):
    def __init__(self, code: int, message: str, data=None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


@dataclass
class FakeChain:
    """State behind the fake node and bundler."""

    chain_id: int = 1337
    entry_point_version: EntryPointVersion = EntryPointVersion.V06
    code: dict = field(default_factory=dict)
    balances: dict = field(default_factory=dict)
    nonces: dict = field(default_factory=dict)
    base_fee: Optional[int] = 10
    max_priority_fee: int = 2
    gas_price: int = 7
    # None makes the estimation revert.
    simulate_validation_gas: Optional[int] = None
    call_gas: Optional[int] = 50_000
    sender_address_reverts: bool = True
    sender_address_override: Optional[str] = None
    bundler_estimation: dict = field(
        default_factory=lambda: {
            "preVerificationGas": "0xb000",
            "verificationGasLimit": "0x30000",
            "callGasLimit": "0x20000",
        }
    )
    bundler_error: Optional[str] = None
    by_hash_error: Optional[str] = None
    polls_until_included: int = 0
    sent_user_ops: dict = field(default_factory=dict)
    included: dict = field(default_factory=dict)
    polls: int = 0

    def deploy(self, address: str, code: bytes = ACCOUNT_CODE):
        self.code[address.lower()] = code


def create_rpc_app(chain: FakeChain) -> FastAPI:
    """
    JSON-RPC app answering both node and bundler methods from `chain`.
    """
    app = FastAPI()

    def get_sender_address(data: bytes):
        if not chain.sender_address_reverts:
            return "0x"

        (init_code,) = eth_abi.decode(["bytes"], data)
        factory = Web3.to_checksum_address("0x" + init_code[:20].hex())
        owner, salt = eth_abi.decode(["address", "uint256"], init_code[24:])
        sender = chain.sender_address_override or derive_create2_address(
            factory, salt, ACCOUNT_CODE + Web3.to_bytes(hexstr=owner)
        )
        raise RpcFault(
            3,
            "execution reverted",
            "0x"
            + (
                SENDER_ADDRESS_RESULT_SELECTOR
                + eth_abi.encode(["address"], [sender])
            ).hex(),
        )

    def get_nonce(data: bytes):
        sender, _ = eth_abi.decode(["address", "uint192"], data)
        nonce = chain.nonces.get(sender.lower(), 0)
        return "0x" + eth_abi.encode(["uint256"], [nonce]).hex()

    def eth_call(transaction, block="latest"):
        data = Web3.to_bytes(hexstr=transaction.get("data", "0x"))
        function, args = data[:4], data[4:]
        if function == GET_SENDER_ADDRESS_SELECTOR:
            return get_sender_address(args)
        if function == GET_NONCE_SELECTOR:
            return get_nonce(args)
        return "0x"

    def eth_estimateGas(transaction, block=None):
        if transaction["to"].lower() == ENTRY_POINT.lower():
            gas = chain.simulate_validation_gas
        else:
            gas = chain.call_gas
        if gas is None:
            raise RpcFault(3, "execution reverted", "0x")
        return hex(gas)

    def eth_getBlockByNumber(number, full_transactions=False):
        block = {"number": "0x1"}
        if chain.base_fee is not None:
            block["baseFeePerGas"] = hex(chain.base_fee)
        return block

    def eth_estimateUserOperationGas(user_op, entry_point):
        if chain.bundler_error:
            raise RpcFault(-32500, chain.bundler_error)
        return chain.bundler_estimation

    def eth_sendUserOperation(user_op, entry_point):
        if chain.bundler_error:
            raise RpcFault(-32500, chain.bundler_error)

        user_op_hash = get_user_op_hash(
            user_op, entry_point, chain.chain_id, chain.entry_point_version
        )
        chain.sent_user_ops[user_op_hash] = user_op
        return user_op_hash

    def eth_getUserOperationByHash(user_op_hash):
        if chain.by_hash_error:
            raise RpcFault(-32603, chain.by_hash_error)
        if user_op_hash not in chain.sent_user_ops:
            return None

        chain.polls += 1
        if chain.polls > chain.polls_until_included:
            chain.included.setdefault(user_op_hash, TRANSACTION_HASH)
        if user_op_hash not in chain.included:
            return None
        return {
            "userOperation": chain.sent_user_ops[user_op_hash],
            "entryPoint": ENTRY_POINT,
            "transactionHash": chain.included[user_op_hash],
        }

    def eth_getUserOperationReceipt(user_op_hash):
        if user_op_hash not in chain.included:
            return None
        return {
            "userOpHash": user_op_hash,
            "success": True,
            "receipt": {"transactionHash": chain.included[user_op_hash]},
        }

    methods = {
        "eth_chainId": lambda: hex(chain.chain_id),
        "eth_getCode": lambda address, block="latest": "0x"
        + chain.code.get(address.lower(), b"").hex(),
        "eth_getBalance": lambda address, block="latest": hex(
            chain.balances.get(address.lower(), 0)
        ),
        "eth_maxPriorityFeePerGas": lambda: hex(chain.max_priority_fee),
        "eth_gasPrice": lambda: hex(chain.gas_price),
        "eth_supportedEntryPoints": lambda: [ENTRY_POINT],
        "eth_call": eth_call,
        "eth_estimateGas": eth_estimateGas,
        "eth_getBlockByNumber": eth_getBlockByNumber,
        "eth_estimateUserOperationGas": eth_estimateUserOperationGas,
        "eth_sendUserOperation": eth_sendUserOperation,
        "eth_getUserOperationByHash": eth_getUserOperationByHash,
        "eth_getUserOperationReceipt": eth_getUserOperationReceipt,
    }

    @app.post("/")
    async def rpc(request: Request):
        body = await request.json()
        response = {"jsonrpc": "2.0", "id": body.get("id")}

        method = methods.get(body["method"])
        if method is None:
            response["error"] = {"code": -32601, "message": "Method not found"}
            return response

        try:
            response["result"] = method(*body.get("params", []))
        except RpcFault as e:
            response["error"] = {"code": e.code, "message": e.message}
            if e.data is not None:
                response["error"]["data"] = e.data
        return response

    return app
