import logging
import re
from typing import Dict, List, Optional

from .config import CONFIG

logger = logging.getLogger(__name__)

ROOM_CODE_PATTERN = re.compile(r'K\d{4}[A-Z]?')
DIGITS_PATTERN = re.compile(r'\b(\d{4})\b')


class UnknownLocations:
    """Raw location labels that could not be resolved during one import run."""

    def __init__(self):
        self._labels: List[str] = []

    def add(self, label: str):
        if label not in self._labels:
            self._labels.append(label)

    def reset(self):
        self._labels = []

    def __contains__(self, label: str) -> bool:
        return label in self._labels

    def __len__(self) -> int:
        return len(self._labels)

    def __iter__(self):
        return iter(self._labels)

    def as_list(self) -> List[str]:
        return list(self._labels)


class LocationNormalizer:
    def __init__(self,
                 aliases: Optional[Dict[str, str]] = None,
                 unknown_location: Optional[str] = None):
        """
        Initialize the normalizer with a table of known non-conforming names.

        Args:
            aliases: Mapping of raw location names to room codes
            unknown_location: Sentinel returned for unresolvable names
        """
        self.aliases = dict(CONFIG['LOCATION_ALIASES'] if aliases is None else aliases)
        self.unknown_location = unknown_location or CONFIG['UNKNOWN_LOCATION']
        self._folded_aliases = {self._fold(name): code for name, code in self.aliases.items()}

    @staticmethod
    def _fold(label: str) -> str:
        return ' '.join(str(label).split()).casefold()

    def normalize(self,
                  device_label: str,
                  location_label: str,
                  unknown: Optional[UnknownLocations] = None) -> str:
        """
        Map a raw device/location pair to a canonical room code.

        Room codes found in either label win over bare four digit numbers,
        which win over the alias table. Anything else is recorded in
        ``unknown`` and mapped to the sentinel.
        """
        texts = [str(device_label or ''), str(location_label or '')]

        for text in texts:
            match = ROOM_CODE_PATTERN.search(text)
            if match:
                return match.group(0)

        for text in texts:
            match = DIGITS_PATTERN.search(text)
            if match:
                return 'K' + match.group(1)

        location_label = str(location_label or '')
        if location_label in self.aliases:
            return self.aliases[location_label]
        folded = self._fold(location_label)
        if folded in self._folded_aliases:
            return self._folded_aliases[folded]

        if unknown is not None:
            unknown.add(location_label)
        logger.debug(f"Could not normalize location '{location_label}' for {device_label}")
        return self.unknown_location

    def is_unknown(self, room: str) -> bool:
        return room == self.unknown_location
