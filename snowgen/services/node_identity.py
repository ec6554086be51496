"""
Host Node Identity Provider

Derives a best-effort default node identity (data center id + machine id) from
the host's hardware address and the current process id. It is only consulted
when a generator is built without explicit ids. Two processes on the same host
will usually get the same data center id and different machine ids, but the
derivation is not collision free: deployments that need guaranteed uniqueness
must assign ids explicitly.
"""

import os
import uuid
import zlib


class HostNodeIdentityProvider:
    """Derives node ids from the MAC address and process id."""

    # uuid.getnode() sets this bit when it had to fall back to a random address
    MULTICAST_BIT = 1 << 40

    def __init__(self, getnode=uuid.getnode, getpid=os.getpid):
        self._getnode = getnode
        self._getpid = getpid

    def data_center_id(self, max_value: int) -> int:
        """Returns a data center id in ``[0, max_value]`` from the last two MAC bytes."""
        node = self._getnode()
        if node & self.MULTICAST_BIT:
            return 1 % (max_value + 1)

        mac = node.to_bytes(6, "big")
        data_center_id = (mac[-2] | (mac[-1] << 8)) >> 6
        return data_center_id % (max_value + 1)

    def machine_id(self, max_value: int, data_center_id: int) -> int:
        """Returns a machine id in ``[0, max_value]`` from the data center id and pid."""
        seed = f"{data_center_id}{self._getpid()}".encode()
        return (zlib.crc32(seed) & 0xFFFF) % (max_value + 1)
