"""
Agent configuration.

Values come from the process environment, falling back to a .env file.
Only the keys in ENV_KEYS are read from the file, and the environment
always wins over it.
"""

import os
import socket
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from dotenv import dotenv_values
from loguru import logger

from .crypto import KEY_SIZE
from .errors import ConfigError
from .protocol import DEFAULT_PORT
from .sensors import DEFAULT_DEVICES_PATH

ENV_KEYS = (
    "ADAPTER_HOST",
    "ADAPTER_KEY",
    "ADAPTER_PORT",
    "DEBUG",
    "SYSTEM_ID",
    "W1_DEVICES_PATH",
)

TRUTHY = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Config:
    system_id: str
    adapter_host: str
    adapter_port: int
    adapter_key: bytes = field(repr=False)
    w1_devices_path: str
    debug: bool = False


def read_env(environ: Optional[Mapping[str, str]] = None, env_file: Optional[str] = ".env") -> Dict[str, str]:
    """Merge the known keys of the environment and the .env file."""
    environ = os.environ if environ is None else environ
    values = {key: environ[key] for key in ENV_KEYS if environ.get(key)}

    if env_file and os.path.isfile(env_file):
        for key, value in dotenv_values(env_file).items():
            if key not in ENV_KEYS or key in values or value is None:
                continue
            values[key] = value
            logger.debug("read {} from {} file", key, env_file)

    return values


def is_debug(values: Mapping[str, str]) -> bool:
    return values.get("DEBUG", "").strip().lower() in TRUTHY


def load_config(environ: Optional[Mapping[str, str]] = None, env_file: Optional[str] = ".env") -> Config:
    """
    Build and validate the agent configuration.

    Raises ConfigError on a missing host, an invalid port or key, or a
    devices path that does not exist.
    """
    values = read_env(environ, env_file)

    system_id = values.get("SYSTEM_ID", "").strip()
    if not system_id:
        system_id = socket.gethostname()
        logger.warning(
            "Using the hostname {} as system ID. Please set SYSTEM_ID to a unique value.",
            system_id,
        )
    logger.debug("systemId {}", system_id)

    port_value = values.get("ADAPTER_PORT", "").strip()
    if port_value:
        try:
            adapter_port = int(port_value, 10)
        except ValueError:
            raise ConfigError(f"Invalid ADAPTER_PORT {port_value!r}!") from None
        if not 0 < adapter_port < 65536:
            raise ConfigError(f"Invalid ADAPTER_PORT {adapter_port}!")
    else:
        adapter_port = DEFAULT_PORT
    logger.debug("adapterPort {}", adapter_port)

    adapter_host = values.get("ADAPTER_HOST", "").strip()
    if not adapter_host:
        raise ConfigError("No ADAPTER_HOST given!")
    logger.debug("adapterHost {}", adapter_host)

    try:
        adapter_key = bytes.fromhex(values.get("ADAPTER_KEY", "").strip())
    except ValueError:
        raise ConfigError("ADAPTER_KEY is no valid key!") from None
    if len(adapter_key) != KEY_SIZE:
        raise ConfigError("ADAPTER_KEY is no valid key!")
    logger.debug("adapterKey <{} bytes>", len(adapter_key))

    w1_devices_path = values.get("W1_DEVICES_PATH", "").strip() or DEFAULT_DEVICES_PATH
    if not os.path.exists(w1_devices_path):
        raise ConfigError(f"The 1-wire devices path {w1_devices_path} does not exist!")
    logger.debug("w1DevicesPath {}", w1_devices_path)

    return Config(
        system_id=system_id,
        adapter_host=adapter_host,
        adapter_port=adapter_port,
        adapter_key=adapter_key,
        w1_devices_path=w1_devices_path,
        debug=is_debug(values),
    )
