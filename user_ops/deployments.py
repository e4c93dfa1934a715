import json
from pathlib import Path
from typing import Union


def load(path: Union[str, Path]) -> dict[int, dict]:
    """
    Read network configurations from a JSON file keyed by chain ID. Keys of
    each entry may be written in camelCase or snake_case.
    """
    with open(path, "r") as f:
        data = json.load(f)

    networks = {}
    for chain_id, network in data.items():
        network = {camel_to_snake(k): v for k, v in network.items()}
        network.setdefault("chain_id", int(chain_id))
        networks[int(chain_id)] = network

    return networks


def camel_to_snake(camel_str):
    snake_str = ""
    for i, char in enumerate(camel_str):
        if char.isupper():
            if i > 0 and camel_str[i - 1].islower():
                snake_str += "_"
            if i < len(camel_str) - 1 and camel_str[i + 1].islower():
                snake_str += char.lower()
            else:
                snake_str += char
        else:
            snake_str += char
    return snake_str.lower()
