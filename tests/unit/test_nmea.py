"""
Unit tests for the NMEA sentence parser
"""

import pytest

from sostrack.services.tracking.nmea import NMEAParser, checksum_ok, parse_coordinate


GGA = "$GPGGA,123519,4807.038,N,01131.000,E,1,08,0.9,545.4,M,46.9,M,,*47"
RMC = "$GPRMC,123519,A,4807.038,N,01131.000,E,022.4,084.4,230394,003.1,W*6A"


class TestNMEAParser:
    """Test GGA/RMC decoding"""

    def setup_method(self):
        self.parser = NMEAParser()

    def test_parse_gga(self):
        fix = self.parser.parse(GGA)

        assert fix.sentence_type == "GGA"
        assert fix.latitude == pytest.approx(48.1173, abs=1e-4)
        assert fix.longitude == pytest.approx(11.516667, abs=1e-5)
        assert fix.satellites == 8
        assert fix.hdop == 0.9

    def test_parse_rmc(self):
        fix = self.parser.parse(RMC + "\r\n")

        assert fix.sentence_type == "RMC"
        assert fix.latitude == pytest.approx(48.1173, abs=1e-4)

    def test_other_talker_ids(self):
        fix = self.parser.parse("$GNGGA,123519,3345.000,S,15112.000,W,1,05,1.2,10.0,M,0.0,M,,")

        assert fix.latitude == pytest.approx(-33.75)
        assert fix.longitude == pytest.approx(-151.2)

    def test_bad_checksum_rejected(self):
        assert self.parser.parse(GGA[:-2] + "48") is None

    def test_gga_without_fix_ignored(self):
        assert self.parser.parse("$GPGGA,123519,4807.038,N,01131.000,E,0,00,,,M,,M,,") is None

    def test_void_rmc_ignored(self):
        assert self.parser.parse("$GPRMC,123519,V,4807.038,N,01131.000,E,,,230394,,") is None

    @pytest.mark.parametrize("sentence", [
        "",
        "garbage",
        "$GPGSV,3,1,11,03,03,111,00,04,15,270,00,06,01,010,00,13,06,292,00",
        "$GPGGA,123519,,,,,1,08,0.9,545.4,M,46.9,M,,",
        "$GPGGA,123519,48x7.038,N,01131.000,E,1,08,0.9,545.4,M,46.9,M,,",
        "$GPGGA,123519",
    ])
    def test_unusable_sentences(self, sentence):
        assert self.parser.parse(sentence) is None


def test_checksum_ok():
    assert checksum_ok(GGA)
    assert checksum_ok(RMC)
    assert checksum_ok("$GPGGA,no,checksum")
    assert not checksum_ok("$GPGGA,1,2*ZZ")


def test_parse_coordinate_requires_hemisphere():
    assert parse_coordinate("4807.038", "") is None
    assert parse_coordinate("", "N") is None
