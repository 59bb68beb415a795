"""Tests for kiosk/utils.py."""

from __future__ import annotations

import pytest
from kiosk.utils import clean_sysfs_text, mask_secret, parse_float, strip_non_alnum, strip_or_none


def test_strip_non_alnum():
    assert strip_non_alnum("ab-12_CD.ef") == "ab12CDef"


def test_clean_sysfs_text():
    assert clean_sysfs_text("Raspberry Pi 4\0\n") == "Raspberry Pi 4"


@pytest.mark.parametrize("value, expected", [(None, None), ("", None), ("  ", None), (" x ", "x")])
def test_strip_or_none(value, expected):
    assert strip_or_none(value) == expected


def test_parse_float():
    assert parse_float("1.5", 1.0) == 1.5
    assert parse_float(None, 1.25) == 1.25
    assert parse_float("wide", 1.25) == 1.25


def test_mask_secret():
    assert mask_secret("hunter2") == "*******"
    assert mask_secret(None) == "null"
