"""
ds18b20-remote Protocol Definitions (Shared)
Message schemas for controller-agent communication.

All messages are JSON objects with a "cmd" field. Requests carry an opaque
"ts" token which the agent echoes back, so the controller can match
replies that arrive out of order.
"""

from typing import Any, Dict, List

# Bumped whenever the message schema changes incompatibly.
# A mismatch is only logged, never rejected.
REMOTE_PROTOCOL_VERSION = 1

DEFAULT_PORT = 1820

CMD_CLIENT_INFO = "clientInfo"
CMD_READ = "read"
CMD_SEARCH = "search"

Message = Dict[str, Any]

# Example messages:

# Either direction (Handshake)
# {
#   "cmd": "clientInfo",
#   "protocolVersion": 1,
#   "systemId": "garden-pi"
# }

# Controller → Agent (Read)
# {
#   "cmd": "read",
#   "address": "28-0000077ba131",
#   "ts": 1700000000000
# }

# Agent → Controller (Read result, "raw" is "" if the sensor could not be read)
# {
#   "cmd": "read",
#   "address": "28-0000077ba131",
#   "ts": 1700000000000,
#   "raw": "72 01 4b 46 7f ff 0e 10 57 : crc=57 YES\n72 01 ... t=23125\n"
# }

# Controller → Agent (Search)
# {
#   "cmd": "search",
#   "ts": 1700000000001,
#   "systemId": "garden-pi"
# }

# Agent → Controller (Search result)
# {
#   "cmd": "search",
#   "ts": 1700000000001,
#   "systemId": "garden-pi",
#   "addresses": ["28-0000077ba131", "28-0000077c2f5e"]
# }


def client_info(system_id: str, protocol_version: int = REMOTE_PROTOCOL_VERSION) -> Message:
    return {
        "cmd": CMD_CLIENT_INFO,
        "protocolVersion": protocol_version,
        "systemId": system_id,
    }


def read_request(address: str, ts: Any) -> Message:
    return {"cmd": CMD_READ, "address": address, "ts": ts}


def read_response(address: str, ts: Any, raw: str) -> Message:
    return {"cmd": CMD_READ, "address": address, "ts": ts, "raw": raw}


def search_request(ts: Any, system_id: str) -> Message:
    return {"cmd": CMD_SEARCH, "ts": ts, "systemId": system_id}


def search_response(ts: Any, system_id: str, addresses: List[str]) -> Message:
    return {
        "cmd": CMD_SEARCH,
        "ts": ts,
        "systemId": system_id,
        "addresses": list(addresses),
    }
