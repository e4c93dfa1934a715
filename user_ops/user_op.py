from typing import Optional

import eth_abi
from pydantic import BaseModel, ConfigDict
from web3 import Web3

import smart_account.constants as constants
from smart_account.constants import EntryPointVersion
from user_ops.contracts import SmartAccount, encode_abi
from user_ops.deployments import camel_to_snake
from user_ops.validation import Address, Bytes, Uint256, validate_bytes
from user_ops.web3 import get_address_from_first_20_bytes

V06 = EntryPointVersion.V06
V07 = EntryPointVersion.V07


class Call(BaseModel):
    model_config = ConfigDict(frozen=True)

    to: Address
    value: Uint256 = 0
    data: Bytes = b""

    def encode_execute(self) -> bytes:
        return encode_abi(
            SmartAccount, "execute", [self.to, self.value, self.data]
        )


class GasEstimation(BaseModel):
    pre_verification_gas: Uint256
    verification_gas_limit: Uint256
    call_gas_limit: Uint256
    paymaster_verification_gas_limit: Optional[Uint256] = None
    paymaster_post_op_gas_limit: Optional[Uint256] = None

    @classmethod
    def from_rpc(cls, data: dict) -> "GasEstimation":
        data = {camel_to_snake(k): v for k, v in data.items()}
        if "verification_gas" in data:
            data.setdefault(
                "verification_gas_limit", data.pop("verification_gas")
            )
        return cls.model_validate(data)


class UserOp(BaseModel):
    """
    Canonical UserOperation. Deployment and paymaster data are kept as
    separate fields; the EntryPoint version only decides how they are packed
    on the wire and for hashing (see `to_rpc`, `from_rpc` and `pack`).
    """

    model_config = ConfigDict(frozen=True)

    sender: Address
    nonce: Uint256
    factory: Optional[Address] = None
    factory_data: Bytes = b""
    call_data: Bytes = b""
    call_gas_limit: Uint256 = constants.DEFAULT_GAS_LIMITS["call"]
    verification_gas_limit: Uint256 = constants.DEFAULT_GAS_LIMITS[
        "verification"
    ]
    pre_verification_gas: Uint256 = constants.DEFAULT_GAS_LIMITS[
        "pre_verification"
    ]
    max_fee_per_gas: Uint256 = 0
    max_priority_fee_per_gas: Uint256 = 0
    paymaster: Optional[Address] = None
    paymaster_verification_gas_limit: Uint256 = 0
    paymaster_post_op_gas_limit: Uint256 = 0
    paymaster_data: Bytes = b""
    signature: Bytes = b""

    def replace(self, **changes) -> "UserOp":
        return self.model_validate({**self.model_dump(), **changes})

    def has_factory(self) -> bool:
        return self.factory not in (None, constants.ZERO_ADDRESS)

    def has_paymaster(self) -> bool:
        return self.paymaster not in (None, constants.ZERO_ADDRESS)

    @property
    def init_code(self) -> bytes:
        return pack_init_code(self.factory, self.factory_data)

    def get_paymaster_and_data(self, version: EntryPointVersion) -> bytes:
        return pack_paymaster_and_data(
            self.paymaster,
            self.paymaster_data,
            version,
            self.paymaster_verification_gas_limit,
            self.paymaster_post_op_gas_limit,
        )

    def get_required_prefund(self) -> int:
        return self.call_gas_limit * self.max_fee_per_gas

    def abi_values(self, version: EntryPointVersion) -> tuple:
        """Values of the EntryPoint's UserOperation struct for `version`."""
        if version == V06:
            return (
                self.sender,
                self.nonce,
                self.init_code,
                self.call_data,
                self.call_gas_limit,
                self.verification_gas_limit,
                self.pre_verification_gas,
                self.max_fee_per_gas,
                self.max_priority_fee_per_gas,
                self.get_paymaster_and_data(version),
                self.signature,
            )

        return (
            self.sender,
            self.nonce,
            self.init_code,
            self.call_data,
            _pack_uint128_pair(
                self.verification_gas_limit, self.call_gas_limit
            ),
            self.pre_verification_gas,
            _pack_uint128_pair(
                self.max_priority_fee_per_gas, self.max_fee_per_gas
            ),
            self.get_paymaster_and_data(version),
            self.signature,
        )

    def pack(self, version: EntryPointVersion) -> bytes:
        """Encoding hashed by the EntryPoint, signature excluded."""
        values = self.abi_values(version)
        if version == V06:
            types = [
                "address",  # sender
                "uint256",  # nonce
                "bytes32",  # keccak(init_code)
                "bytes32",  # keccak(call_data)
                "uint256",  # call_gas_limit
                "uint256",  # verification_gas_limit
                "uint256",  # pre_verification_gas
                "uint256",  # max_fee_per_gas
                "uint256",  # max_priority_fee_per_gas
                "bytes32",  # keccak(paymaster_and_data)
            ]
            dynamic = (2, 3, 9)
        else:
            types = [
                "address",  # sender
                "uint256",  # nonce
                "bytes32",  # keccak(init_code)
                "bytes32",  # keccak(call_data)
                "bytes32",  # account_gas_limits
                "uint256",  # pre_verification_gas
                "bytes32",  # gas_fees
                "bytes32",  # keccak(paymaster_and_data)
            ]
            dynamic = (2, 3, 7)

        values = [
            bytes(Web3.keccak(v)) if i in dynamic else v
            for i, v in enumerate(values[: len(types)])
        ]
        return eth_abi.encode(types, values)

    def hash(
        self, entry_point: str, chain_id: int, version: EntryPointVersion
    ) -> bytes:
        encoded = eth_abi.encode(
            ["bytes32", "address", "uint256"],
            [bytes(Web3.keccak(self.pack(version))), entry_point, chain_id],
        )
        return bytes(Web3.keccak(encoded))

    def to_rpc(self, version: EntryPointVersion) -> dict:
        rpc = {"sender": self.sender, "nonce": _to_hex(self.nonce)}
        if version == V06:
            rpc["initCode"] = _to_hex(self.init_code)
        elif self.has_factory():
            rpc["factory"] = self.factory
            rpc["factoryData"] = _to_hex(self.factory_data)

        rpc.update(
            {
                "callData": _to_hex(self.call_data),
                "callGasLimit": _to_hex(self.call_gas_limit),
                "verificationGasLimit": _to_hex(self.verification_gas_limit),
                "preVerificationGas": _to_hex(self.pre_verification_gas),
                "maxFeePerGas": _to_hex(self.max_fee_per_gas),
                "maxPriorityFeePerGas": _to_hex(self.max_priority_fee_per_gas),
            }
        )

        if version == V06:
            rpc["paymasterAndData"] = _to_hex(
                self.get_paymaster_and_data(version)
            )
        elif self.has_paymaster():
            rpc["paymaster"] = self.paymaster
            rpc["paymasterVerificationGasLimit"] = _to_hex(
                self.paymaster_verification_gas_limit
            )
            rpc["paymasterPostOpGasLimit"] = _to_hex(
                self.paymaster_post_op_gas_limit
            )
            rpc["paymasterData"] = _to_hex(self.paymaster_data)

        rpc["signature"] = _to_hex(self.signature)
        return rpc

    @classmethod
    def from_rpc(cls, data: dict, version: EntryPointVersion) -> "UserOp":
        fields = {
            camel_to_snake(k): v for k, v in data.items() if v is not None
        }
        if version == V06:
            factory, factory_data = unpack_init_code(
                validate_bytes(fields.pop("init_code", "0x"))
            )
            paymaster, paymaster_data, _, _ = unpack_paymaster_and_data(
                validate_bytes(fields.pop("paymaster_and_data", "0x")), version
            )
            fields.update(
                factory=factory,
                factory_data=factory_data,
                paymaster=paymaster,
                paymaster_data=paymaster_data,
            )

        return cls.model_validate(fields)


def pack_init_code(factory: Optional[str], factory_data: bytes) -> bytes:
    if factory in (None, constants.ZERO_ADDRESS):
        return b""

    return Web3.to_bytes(hexstr=factory) + factory_data


def unpack_init_code(init_code: bytes) -> tuple[Optional[str], bytes]:
    if not init_code:
        return None, b""
    if len(init_code) < 20:
        raise ValueError("'init_code' is shorter than an address.")

    return get_address_from_first_20_bytes(init_code), init_code[20:]


def pack_paymaster_and_data(
    paymaster: Optional[str],
    paymaster_data: bytes,
    version: EntryPointVersion,
    verification_gas_limit: int = 0,
    post_op_gas_limit: int = 0,
) -> bytes:
    if paymaster in (None, constants.ZERO_ADDRESS):
        return b""

    packed = Web3.to_bytes(hexstr=paymaster)
    if version == V07:
        packed += verification_gas_limit.to_bytes(16, "big")
        packed += post_op_gas_limit.to_bytes(16, "big")
    return packed + paymaster_data


def unpack_paymaster_and_data(
    paymaster_and_data: bytes, version: EntryPointVersion
) -> tuple[Optional[str], bytes, int, int]:
    if not paymaster_and_data:
        return None, b"", 0, 0

    data_offset = 20 if version == V06 else 52
    if len(paymaster_and_data) < data_offset:
        raise ValueError("'paymaster_and_data' is too short.")

    paymaster = get_address_from_first_20_bytes(paymaster_and_data)
    if version == V06:
        return paymaster, paymaster_and_data[20:], 0, 0

    return (
        paymaster,
        paymaster_and_data[52:],
        int.from_bytes(paymaster_and_data[20:36], "big"),
        int.from_bytes(paymaster_and_data[36:52], "big"),
    )


def _pack_uint128_pair(high: int, low: int) -> bytes:
    if high >= 2**128 or low >= 2**128:
        raise ValueError("Packed gas values must fit in 128 bits.")
    return ((high << 128) | low).to_bytes(32, "big")


def _to_hex(v) -> str:
    if isinstance(v, str):
        return v
    if isinstance(v, int):
        return hex(v)
    if isinstance(v, bytes):
        return "0x" + bytes.hex(v)
