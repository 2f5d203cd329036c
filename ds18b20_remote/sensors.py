"""1-wire sensor bus access through the w1 sysfs tree.

Layout under the devices root::

    w1_master_slaves                    aggregate slave list (optional)
    w1_bus_master1/w1_master_slaves     one slave list per bus master
    28-0000077ba131/w1_slave            raw reading of one sensor
"""

import asyncio
import os
import re
from typing import List

import aiofiles
import aiofiles.os
from loguru import logger

from .errors import SensorBusError

DEFAULT_DEVICES_PATH = "/sys/bus/w1/devices"

MASTER_SLAVES_FILE = "w1_master_slaves"
SLAVE_FILE = "w1_slave"
BUS_MASTER_PATTERN = re.compile(r"^w1_bus_master\d+$")


class SensorBus:
    """Read-only view of the 1-wire devices directory."""

    def __init__(self, devices_path: str = DEFAULT_DEVICES_PATH):
        self.devices_path = devices_path

    def sensor_path(self, address: str) -> str:
        return os.path.join(self.devices_path, address, SLAVE_FILE)

    async def read_sensor(self, address: str) -> str:
        """
        Read the raw w1_slave content of one sensor.

        Any failure yields an empty string. The controller treats that as
        an unreadable sensor.
        """
        # Addresses are plain directory names, never paths.
        if (not address or address in (".", "..") or "/" in address
                or os.sep in address or "\0" in address):
            logger.warning("Refusing to read sensor with invalid address {!r}", address)
            return ""

        path = self.sensor_path(address)
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                raw = await f.read()
        except (OSError, ValueError) as e:
            logger.warning("Read from file {} failed! {}", path, e)
            return ""

        logger.debug("Read from file {}: {!r}", path, raw)
        return raw

    async def enumerate_sensors(self) -> List[str]:
        """
        Collect the addresses listed by every bus master.

        Raises SensorBusError if the root cannot be listed or any master
        file cannot be read.
        """
        try:
            entries = sorted(await aiofiles.os.listdir(self.devices_path))
        except OSError as e:
            raise SensorBusError(f"Cannot list {self.devices_path}: {e}") from e

        paths = []
        for entry in entries:
            if BUS_MASTER_PATTERN.match(entry):
                paths.append(os.path.join(self.devices_path, entry, MASTER_SLAVES_FILE))
            elif entry == MASTER_SLAVES_FILE:
                paths.append(os.path.join(self.devices_path, MASTER_SLAVES_FILE))

        contents = await asyncio.gather(*(self._read_master(p) for p in paths))

        addresses: List[str] = []
        for content in contents:
            addresses.extend(line.strip() for line in content.splitlines() if line.strip())
        return addresses

    async def _read_master(self, path: str) -> str:
        logger.debug("reading {}", path)
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                return await f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise SensorBusError(f"Cannot read {path}: {e}") from e
