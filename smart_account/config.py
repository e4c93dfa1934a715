from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

import user_ops.deployments
from smart_account.constants import EntryPointVersion
from smart_account.exceptions import ConfigurationError
from user_ops.validation import Address, Bytes


class NetworkConfig(BaseModel):
    """
    Everything chain specific. There are no built-in networks: each entry is
    supplied by the caller and validated on construction.

    `bundler_url` is required but may be null, in which case gas is estimated
    locally and nothing can be submitted.
    """

    model_config = ConfigDict(frozen=True)

    chain_id: int
    rpc_url: str
    bundler_url: Optional[str]
    entry_point: Address
    entry_point_version: EntryPointVersion
    account_factory: Address
    paymaster: Optional[Address] = None
    paymaster_data: Bytes = b""

    @model_validator(mode="after")
    def check_paymaster(self):
        if self.paymaster_data and self.paymaster is None:
            raise ValueError("'paymaster_data' is set without a 'paymaster'.")
        return self


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="USEROP_")

    networks: dict[int, NetworkConfig] = {}
    networks_file: Optional[Path] = None
    rpc_timeout: float = 30.0
    rpc_max_retries: int = 2
    rpc_retry_backoff: float = 0.5
    receipt_poll_mode: Literal["fixed", "backoff"] = "backoff"
    receipt_poll_delay: float = 8.0
    receipt_poll_attempts: int = 5
    receipt_poll_backoff: float = 2.0

    def get_network_config(self, chain_id: int) -> NetworkConfig:
        if chain_id in self.networks:
            return self.networks[chain_id]

        if self.networks_file is not None:
            networks = user_ops.deployments.load(self.networks_file)
            if chain_id in networks:
                try:
                    return NetworkConfig(**networks[chain_id])
                except ValidationError as e:
                    raise ConfigurationError(
                        f"Invalid configuration for chain ID {chain_id}: {e}"
                    ) from e

        raise ConfigurationError(
            f"Network with chain ID {chain_id} not found."
        )


settings = Settings()
