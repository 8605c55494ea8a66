# Python library to render iCalendar property lines
#
# Copyright (C) 2013-2021  Jochen Sprickerhof
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <http://www.gnu.org/licenses/>.
"""Render Python values as iCalendar property lines."""

from datetime import date, datetime, timezone, tzinfo
from typing import Any
from zoneinfo import ZoneInfo

from dateutil import tz

UTC_ZONES = ("UTC", "UCT", "Zulu", "Etc/UTC", "Etc/UCT", "Etc/Zulu", "Etc/Universal")

# Values that are stored without unescaping when parsed.
VERBATIM = ("UID", "URL", "TZID")


def sanitized(value: Any) -> str:
    """Escape text so it's acceptable as an iCalendar TEXT value."""
    return (
        str(value)
        .replace("\\", "\\\\")
        .replace(",", "\\,")
        .replace(";", "\\;")
        .replace("\n", "\\n")
    )


def _is_utc(zone: tzinfo) -> bool:
    if zone is timezone.utc or isinstance(zone, tz.tzutc):
        return True
    return isinstance(zone, ZoneInfo) and zone.key in UTC_ZONES


def _date_digits(value: date) -> str:
    return f"{value.year:04d}{value.month:02d}{value.day:02d}"


def _datetime_digits(value: datetime) -> str:
    return (
        f"{_date_digits(value)}T{value.hour:02d}{value.minute:02d}{value.second:02d}"
    )


def _build_datetime(name: str, value: datetime) -> str:
    """Render a DATE-TIME, keeping the TZID of zoneinfo timezones.

    Naive values are written as floating time, other timezones are
    converted to UTC.
    """
    if value.tzinfo is None:
        return f"{name}:{_datetime_digits(value)}\n"
    if _is_utc(value.tzinfo):
        return f"{name}:{_datetime_digits(value)}Z\n"
    if isinstance(value.tzinfo, ZoneInfo):
        return f"{name};TZID={value.tzinfo.key}:{_datetime_digits(value)}\n"
    return f"{name}:{_datetime_digits(value.astimezone(timezone.utc))}Z\n"


def build(name: str, value: Any) -> str:
    """Return the property line(s) for name and value ("" for None).

    name -- the upper case property name
    value -- a str, date, datetime, list of str or (latitude, longitude)
    """
    if value is None:
        return ""

    if isinstance(value, datetime):
        return _build_datetime(name, value)

    if isinstance(value, date):
        return f"{name};VALUE=DATE:{_date_digits(value)}\n"

    if name == "GEO" and isinstance(value, tuple):
        latitude, longitude = value
        return f"GEO:{latitude};{longitude}\n"

    if isinstance(value, (list, tuple)):
        return f"{name}:{','.join(sanitized(item) for item in value)}\n"

    if name in VERBATIM:
        return f"{name}:{value}\n"

    if name in ("STATUS", "CLASS"):
        return f"{name}:{sanitized(value).upper()}\n"

    return f"{name}:{sanitized(value)}\n"
