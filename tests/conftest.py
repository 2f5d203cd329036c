import pytest
import pytest_asyncio

from ds18b20_remote.framing import FrameCodec

from helpers import KEY, SAMPLE_RAW, LoopbackServer


@pytest.fixture
def key():
    return KEY


@pytest.fixture
def codec():
    return FrameCodec(KEY)


@pytest.fixture
def w1_root(tmp_path):
    """A fake /sys/bus/w1/devices tree with two bus master lists and one sensor."""
    (tmp_path / "w1_master_slaves").write_text("28-0001\n28-0002\n")

    bus = tmp_path / "w1_bus_master1"
    bus.mkdir()
    (bus / "w1_master_slaves").write_text("28-0003\n")

    sensor = tmp_path / "28-0001"
    sensor.mkdir()
    (sensor / "w1_slave").write_text(SAMPLE_RAW)

    return tmp_path


@pytest_asyncio.fixture
async def loopback():
    server = LoopbackServer()
    await server.start()
    yield server
    await server.close()
