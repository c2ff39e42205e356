"""
NMEA 0183 sentence parsing shared by the serial GPS handler and log replay.

Only the two sentences the guidance path needs are decoded:

GPRMC/GNRMC (Recommended Minimum):
    $GPRMC,time,status,lat,N/S,lon,E/W,speed,course,date,mag,mode*checksum
    Position, speed over ground (knots), course over ground, fix status.

GPGGA/GNGGA (Fix Data):
    $GPGGA,time,lat,N/S,lon,E/W,quality,num_sats,hdop,alt,M,geoid,M,...*checksum
    Fix quality, satellites in use and HDOP (used for the accuracy radius).
"""

from dataclasses import dataclass
from typing import List, Optional

from config import GPS_UERE_M
from guidance.data.models import PositionSample
from utils.conversions import knots_to_mps


@dataclass
class RMCData:
    valid: bool
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    speed_mps: Optional[float] = None
    course: Optional[float] = None


@dataclass
class GGAData:
    quality: int
    satellites: int
    hdop: Optional[float]


def nmea_checksum(body: str) -> str:
    """XOR of all characters between $ and * (exclusive), as two hex digits."""
    checksum = 0
    for char in body:
        checksum ^= ord(char)
    return f"{checksum:02X}"


def pmtk_command(body: str) -> bytes:
    """Build a complete MTK command, e.g. pmtk_command("PMTK220,100")."""
    return f"${body}*{nmea_checksum(body)}\r\n".encode('ascii')


def split_sentence(sentence: str) -> Optional[List[str]]:
    """
    Validate checksum and split into fields.

    Returns:
        Field list (field 0 is the talker/type, e.g. "$GPRMC"), or None if
        the sentence has no checksum or it does not match
    """
    sentence = sentence.strip()
    if not sentence.startswith('$') or '*' not in sentence:
        return None
    data_part, checksum = sentence.rsplit('*', 1)
    if nmea_checksum(data_part[1:]) != checksum.strip().upper():
        return None
    return data_part.split(',')


def _parse_coordinate(value: str, hemisphere: str, degree_digits: int) -> Optional[float]:
    """DDMM.MMMM / DDDMM.MMMM plus hemisphere -> signed decimal degrees."""
    if not value:
        return None
    degrees = float(value[:degree_digits])
    minutes = float(value[degree_digits:])
    result = degrees + minutes / 60.0
    if hemisphere in ('S', 'W'):
        result = -result
    return result


def _optional_float(value: str) -> Optional[float]:
    return float(value) if value else None


def parse_rmc(sentence: str) -> Optional[RMCData]:
    """
    Parse GPRMC/GNRMC sentence.

    Example: $GPRMC,123519,A,4807.038,N,01131.000,E,022.4,084.4,230394,003.1,W*6A
    """
    parts = split_sentence(sentence)
    if not parts or parts[0][3:] != 'RMC' or len(parts) < 10:
        return None

    try:
        # Status: A=valid, V=invalid
        if parts[2] != 'A':
            return RMCData(valid=False)

        speed_knots = _optional_float(parts[7])
        return RMCData(
            valid=True,
            latitude=_parse_coordinate(parts[3], parts[4], 2),
            longitude=_parse_coordinate(parts[5], parts[6], 3),
            speed_mps=knots_to_mps(speed_knots) if speed_knots is not None else None,
            course=_optional_float(parts[8]),
        )
    except (ValueError, IndexError):
        return None


def parse_gga(sentence: str) -> Optional[GGAData]:
    """
    Parse GPGGA/GNGGA sentence for fix quality, satellites and HDOP.

    Example: $GPGGA,123519,4807.038,N,01131.000,E,1,08,0.9,545.4,M,46.9,M,,*47
    """
    parts = split_sentence(sentence)
    if not parts or parts[0][3:] != 'GGA' or len(parts) < 9:
        return None

    try:
        return GGAData(
            quality=int(parts[6] or 0),
            satellites=int(parts[7] or 0),
            hdop=_optional_float(parts[8]),
        )
    except ValueError:
        return None


def accuracy_from_hdop(hdop: Optional[float], uere_m: float = GPS_UERE_M) -> Optional[float]:
    """Rough horizontal accuracy radius in metres."""
    if hdop is None or hdop <= 0:
        return None
    return hdop * uere_m


class NMEAParser:
    """
    Line-by-line parser that merges GGA precision into RMC fixes.

    feed_line() returns the RMCData for every RMC sentence (valid or not)
    and None for anything else. to_sample() turns a valid RMC into a
    PositionSample using the most recent GGA HDOP and satellite count.
    """

    def __init__(self, uere_m: float = GPS_UERE_M):
        self.uere_m = uere_m
        self.hdop: Optional[float] = None
        self.satellites: Optional[int] = None
        self.rejected = 0

    def feed_line(self, line: str) -> Optional[RMCData]:
        line = line.strip()
        if not line.startswith('$'):
            return None

        kind = line[3:6]
        if kind == 'GGA':
            gga = parse_gga(line)
            if gga is None:
                self.rejected += 1
            else:
                self.hdop = gga.hdop
                self.satellites = gga.satellites
            return None
        if kind == 'RMC':
            rmc = parse_rmc(line)
            if rmc is None:
                self.rejected += 1
            return rmc
        return None

    def to_sample(self, rmc: RMCData, timestamp: float) -> PositionSample:
        return PositionSample(
            latitude=rmc.latitude,
            longitude=rmc.longitude,
            accuracy=accuracy_from_hdop(self.hdop, self.uere_m),
            speed=rmc.speed_mps,
            heading=rmc.course,
            satellites=self.satellites,
            timestamp=timestamp,
        )
