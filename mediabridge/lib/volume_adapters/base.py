# mediabridge
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Abstract base class for system volume endpoints.

Levels are fractions in [0.0, 1.0].  Adapters raise VolumeUnavailable when
the endpoint cannot be read or written; VolumeMonitor turns that into an
"unavailable" flag instead of letting it escape.
"""

from abc import ABC, abstractmethod

from ..errors import VolumeUnavailable


class VolumeAdapter(ABC):
    """Interface every volume endpoint must implement."""

    name: str = ""

    @abstractmethod
    async def get_volume(self) -> float: ...

    @abstractmethod
    async def set_volume(self, level: float) -> None: ...

    @abstractmethod
    async def get_muted(self) -> bool: ...

    @abstractmethod
    async def set_muted(self, muted: bool) -> None: ...

    async def read(self) -> tuple[float, bool]:
        """Read level and mute flag together."""
        return await self.get_volume(), await self.get_muted()


__all__ = ["VolumeAdapter", "VolumeUnavailable"]
