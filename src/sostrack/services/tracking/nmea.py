"""
Minimal NMEA 0183 parser for GNSS receivers.

Only the sentences carrying a position fix are decoded (GGA and RMC, any
talker id such as GP, GN, GL or GA).
"""

import logging
from dataclasses import dataclass
from functools import reduce
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NMEAFix:
    """Position decoded from a single sentence"""
    latitude: float
    longitude: float
    sentence_type: str
    satellites: Optional[int] = None
    hdop: Optional[float] = None


def checksum_ok(sentence: str) -> bool:
    """Validate the ``*hh`` checksum; sentences without one are accepted"""
    if '*' not in sentence:
        return True
    body, _, checksum = sentence[1:].partition('*')
    try:
        expected = int(checksum[:2], 16)
    except ValueError:
        return False
    return reduce(lambda acc, ch: acc ^ ord(ch), body, 0) == expected


def parse_coordinate(value: str, hemisphere: str) -> Optional[float]:
    """Convert ddmm.mmmm / dddmm.mmmm plus hemisphere to signed decimal degrees"""
    if not value or not hemisphere:
        return None

    coord = float(value)
    degrees = int(coord / 100)
    minutes = coord - degrees * 100
    decimal = degrees + minutes / 60

    if hemisphere in ('S', 'W'):
        decimal = -decimal
    return decimal


class NMEAParser:

    def parse(self, sentence: str) -> Optional[NMEAFix]:
        sentence = sentence.strip()
        if not sentence.startswith('$') or len(sentence) < 7:
            return None

        if not checksum_ok(sentence):
            logger.debug("Bad NMEA checksum: %s", sentence)
            return None

        kind = sentence[3:6]
        fields = sentence.split('*')[0].split(',')
        try:
            if kind == 'GGA':
                return self._parse_gga(fields)
            if kind == 'RMC':
                return self._parse_rmc(fields)
        except (IndexError, ValueError) as e:
            logger.debug("Error parsing NMEA %s: %s", sentence, e)

        return None

    def _parse_gga(self, fields) -> Optional[NMEAFix]:
        fix_quality = int(fields[6]) if fields[6] else 0
        if fix_quality == 0:
            return None

        lat = parse_coordinate(fields[2], fields[3])
        lon = parse_coordinate(fields[4], fields[5])
        if lat is None or lon is None:
            return None

        return NMEAFix(
            latitude=lat,
            longitude=lon,
            sentence_type='GGA',
            satellites=int(fields[7]) if fields[7] else None,
            hdop=float(fields[8]) if fields[8] else None,
        )

    def _parse_rmc(self, fields) -> Optional[NMEAFix]:
        # Status 'V' means the receiver has no valid fix
        if fields[2] != 'A':
            return None

        lat = parse_coordinate(fields[3], fields[4])
        lon = parse_coordinate(fields[5], fields[6])
        if lat is None or lon is None:
            return None

        return NMEAFix(latitude=lat, longitude=lon, sentence_type='RMC')
