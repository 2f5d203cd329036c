"""Tests for the 1-wire sysfs reader."""

import pytest

from ds18b20_remote.errors import SensorBusError
from ds18b20_remote.sensors import SensorBus

from helpers import SAMPLE_RAW


@pytest.mark.asyncio
async def test_read_sensor(w1_root):
    bus = SensorBus(str(w1_root))
    assert await bus.read_sensor("28-0001") == SAMPLE_RAW


@pytest.mark.asyncio
async def test_read_missing_sensor_returns_empty(w1_root):
    bus = SensorBus(str(w1_root))
    assert await bus.read_sensor("28-ffff") == ""


@pytest.mark.asyncio
@pytest.mark.parametrize("address", ["", "..", "../28-0001", "28-0001/../28-0001", ".", "28-00\x0001"])
async def test_read_rejects_path_like_addresses(w1_root, address):
    bus = SensorBus(str(w1_root))
    assert await bus.read_sensor(address) == ""


@pytest.mark.asyncio
async def test_enumerate_all_bus_masters(w1_root):
    bus = SensorBus(str(w1_root))
    addresses = await bus.enumerate_sensors()
    assert sorted(addresses) == ["28-0001", "28-0002", "28-0003"]


@pytest.mark.asyncio
async def test_enumerate_trims_and_skips_blank_lines(tmp_path):
    (tmp_path / "w1_master_slaves").write_text("  28-0001  \n\n28-0002\r\n\n")
    bus = SensorBus(str(tmp_path))
    assert await bus.enumerate_sensors() == ["28-0001", "28-0002"]


@pytest.mark.asyncio
async def test_enumerate_keeps_source_duplicates(tmp_path):
    (tmp_path / "w1_master_slaves").write_text("28-0001\n")
    bus1 = tmp_path / "w1_bus_master1"
    bus1.mkdir()
    (bus1 / "w1_master_slaves").write_text("28-0001\n")
    bus = SensorBus(str(tmp_path))
    assert await bus.enumerate_sensors() == ["28-0001", "28-0001"]


@pytest.mark.asyncio
async def test_enumerate_multiple_numbered_buses(tmp_path):
    for n, address in ((1, "28-000a"), (2, "28-000b"), (10, "28-000c")):
        d = tmp_path / f"w1_bus_master{n}"
        d.mkdir()
        (d / "w1_master_slaves").write_text(address + "\n")
    (tmp_path / "w1_bus_masterX").mkdir()

    bus = SensorBus(str(tmp_path))
    assert sorted(await bus.enumerate_sensors()) == ["28-000a", "28-000b", "28-000c"]


@pytest.mark.asyncio
async def test_enumerate_empty_bus(tmp_path):
    bus = SensorBus(str(tmp_path))
    assert await bus.enumerate_sensors() == []


@pytest.mark.asyncio
async def test_enumerate_missing_root_raises(tmp_path):
    bus = SensorBus(str(tmp_path / "missing"))
    with pytest.raises(SensorBusError):
        await bus.enumerate_sensors()


@pytest.mark.asyncio
async def test_enumerate_unreadable_master_raises(tmp_path):
    # Bus master directory without its slave list
    (tmp_path / "w1_bus_master1").mkdir()
    bus = SensorBus(str(tmp_path))
    with pytest.raises(SensorBusError):
        await bus.enumerate_sensors()
