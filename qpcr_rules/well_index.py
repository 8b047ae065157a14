"""WellDataIndex: (well position, channel) -> Ct value lookup.

Built once per analysis run from the flat well list. Positions are
normalized to upper case and channel names compare case-insensitively.
"""

import logging
import math
from types import MappingProxyType
from typing import Dict, Iterable, Optional

from qpcr_rules.models import Well
from qpcr_rules.utils import normalize_position

logger = logging.getLogger(__name__)


class WellDataIndex:
    def __init__(self, table: Dict[str, Dict[str, Optional[float]]]):
        self._table = MappingProxyType(
            {pos: MappingProxyType(dict(chans)) for pos, chans in table.items()}
        )

    @classmethod
    def build(cls, wells: Iterable[Well]) -> "WellDataIndex":
        """Group wells by position, then by channel.

        A well+channel keeps its first Ct value; later duplicates are
        logged and ignored. NaN and infinite values count as absent.
        """
        table: Dict[str, Dict[str, Optional[float]]] = {}
        for well in wells:
            position = normalize_position(well.position)
            channel = (well.channel or "").strip().upper()
            if not position or not channel:
                continue
            channels = table.setdefault(position, {})
            if channel in channels:
                logger.warning(
                    "Duplicate reading for well %s channel %s ignored", position, well.channel
                )
                continue
            channels[channel] = _clean_ct(well.ct_value)
        return cls(table)

    def lookup(self, position: str, channel: str) -> Optional[float]:
        channels = self._table.get(normalize_position(position))
        if channels is None:
            return None
        return channels.get((channel or "").strip().upper())

    def channels_for(self, position: str) -> Dict[str, Optional[float]]:
        return dict(self._table.get(normalize_position(position), {}))

    def __contains__(self, position) -> bool:
        return normalize_position(position) in self._table

    def __len__(self) -> int:
        return len(self._table)


def _clean_ct(value) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number
