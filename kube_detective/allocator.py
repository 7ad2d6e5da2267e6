# /*
# Copyright 2026 The kube-detective Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""External IP pool derived from a CIDR block."""

from __future__ import annotations

import ipaddress
import threading

from kube_detective import logger
from kube_detective.errors import ConfigurationError, PoolExhaustedError


class ExternalIPPool:
    """Hands out the addresses of a CIDR one at a time, in increasing order.

    The pool covers the whole block, network and broadcast addresses
    included. Host bits in the CIDR string are masked off, so
    ``10.0.0.7/30`` describes the same pool as ``10.0.0.4/30``.

    Args:
        cidr: IPv4 or IPv6 network in CIDR notation.

    Raises:
        ConfigurationError: If *cidr* cannot be parsed or lacks a prefix length.
    """

    def __init__(self, cidr: str) -> None:
        if "/" not in cidr:
            raise ConfigurationError(f"Couldn't parse externalCIDR {cidr!r}: missing prefix length")
        try:
            self._network = ipaddress.ip_network(cidr, strict=False)
        except ValueError as err:
            raise ConfigurationError(f"Couldn't parse externalCIDR {cidr!r}: {err}") from err
        self._next = 0
        self._lock = threading.Lock()
        logger.debug("External IP pool %s holds %d addresses", self._network, self.capacity)

    @property
    def network(self) -> ipaddress.IPv4Network | ipaddress.IPv6Network:
        return self._network

    @property
    def capacity(self) -> int:
        """Total number of addresses in the block."""
        return self._network.num_addresses

    def __len__(self) -> int:
        with self._lock:
            return self.capacity - self._next

    def allocate(self) -> str:
        """Take the next unused address out of the pool.

        Returns:
            The address as a string.

        Raises:
            PoolExhaustedError: If every address has already been handed out.
        """
        with self._lock:
            if self._next >= self.capacity:
                raise PoolExhaustedError()
            address = self._network[self._next]
            self._next += 1
        return str(address)
