from typing import Optional

from eth_utils import function_abi_to_4byte_selector
from web3 import AsyncWeb3, Web3
from web3.contract import AsyncContract

from smart_account.constants import EntryPointVersion


def _params(*params) -> list:
    return [{"name": name, "type": type_} for name, type_ in params]


def _struct(name: str, *components) -> dict:
    return {
        "name": "userOp",
        "type": "tuple",
        "internalType": f"struct {name}",
        "components": _params(*components),
    }


USER_OPERATION = _struct(
    "UserOperation",
    ("sender", "address"),
    ("nonce", "uint256"),
    ("initCode", "bytes"),
    ("callData", "bytes"),
    ("callGasLimit", "uint256"),
    ("verificationGasLimit", "uint256"),
    ("preVerificationGas", "uint256"),
    ("maxFeePerGas", "uint256"),
    ("maxPriorityFeePerGas", "uint256"),
    ("paymasterAndData", "bytes"),
    ("signature", "bytes"),
)

PACKED_USER_OPERATION = _struct(
    "PackedUserOperation",
    ("sender", "address"),
    ("nonce", "uint256"),
    ("initCode", "bytes"),
    ("callData", "bytes"),
    ("accountGasLimits", "bytes32"),
    ("preVerificationGas", "uint256"),
    ("gasFees", "bytes32"),
    ("paymasterAndData", "bytes"),
    ("signature", "bytes"),
)

SENDER_ADDRESS_RESULT_ABI = {
    "type": "error",
    "name": "SenderAddressResult",
    "inputs": _params(("sender", "address")),
}

# Functions shared by the v0.6 and v0.7 EntryPoints.
ENTRY_POINT_ABI = [
    {
        "type": "function",
        "name": "getNonce",
        "stateMutability": "view",
        "inputs": _params(("sender", "address"), ("key", "uint192")),
        "outputs": _params(("nonce", "uint256")),
    },
    {
        "type": "function",
        "name": "getSenderAddress",
        "stateMutability": "nonpayable",
        "inputs": _params(("initCode", "bytes")),
        "outputs": [],
    },
    SENDER_ADDRESS_RESULT_ABI,
]

ENTRY_POINT_ABIS = {
    version: ENTRY_POINT_ABI
    + [
        {
            "type": "function",
            "name": "simulateValidation",
            "stateMutability": "nonpayable",
            "inputs": [user_operation],
            "outputs": [],
        }
    ]
    for version, user_operation in (
        (EntryPointVersion.V06, USER_OPERATION),
        (EntryPointVersion.V07, PACKED_USER_OPERATION),
    )
}

ACCOUNT_FACTORY_ABI = [
    {
        "type": "function",
        "name": "createAccount",
        "stateMutability": "nonpayable",
        "inputs": _params(("owner", "address"), ("salt", "uint256")),
        "outputs": _params(("ret", "address")),
    }
]

ACCOUNT_ABI = [
    {
        "type": "function",
        "name": "execute",
        "stateMutability": "nonpayable",
        "inputs": _params(
            ("dest", "address"), ("value", "uint256"), ("func", "bytes")
        ),
        "outputs": [],
    }
]

SENDER_ADDRESS_RESULT_SELECTOR = function_abi_to_4byte_selector(
    SENDER_ADDRESS_RESULT_ABI
)

# Only encodes calldata, it never connects to a node.
offline_w3 = Web3()

AccountFactory = offline_w3.eth.contract(abi=ACCOUNT_FACTORY_ABI)
SmartAccount = offline_w3.eth.contract(abi=ACCOUNT_ABI)


def EntryPoint(
    w3: AsyncWeb3,
    address: str,
    version: Optional[EntryPointVersion] = None,
) -> AsyncContract:
    abi = ENTRY_POINT_ABIS[version] if version else ENTRY_POINT_ABI
    return w3.eth.contract(address=address, abi=abi)


def encode_abi(contract, fn_name: str, args: list) -> bytes:
    return Web3.to_bytes(hexstr=contract.encode_abi(fn_name, args=args))
