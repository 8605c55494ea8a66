# Python library to convert between iCalendar VEVENT text and Event objects
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
"""Python library to convert between iCalendar VEVENT text and Event objects."""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime, tzinfo
from logging import getLogger
from os import environ
from os.path import realpath
from re import compile as compile_re
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import tz

from vobject.base import Component, readOne

import ics_kv

_LOGGER = getLogger(__name__)

# A physical line starting a new property: NAME[;PARAM=value]*:
_PROPERTY = compile_re(r'[A-Z][A-Z0-9-]*(;[A-Za-z0-9-]+(=("[^"]*"|[^";:]*))?)*:')
_LINE_BREAK = compile_re(r"\r\n|\r|\n")
_DATE = compile_re(r"([0-9]{4})([0-9]{2})([0-9]{2})")
_DATE_TIME = compile_re(
    r"([0-9]{4})([0-9]{2})([0-9]{2})T([0-9]{2})([0-9]{2})([0-9]{2})Z?"
)
_FLOAT_PREFIX = compile_re(r"[+-]?([0-9]+(\.[0-9]*)?|\.[0-9]+)([eE][+-]?[0-9]+)?")

DEFAULT_TZID = "Etc/UTC"


class ParseError(ValueError):
    """Raised when iCalendar text can't be parsed."""


class MalformedLineError(ParseError):
    """A logical line without a key/value separator."""


class DateFormatError(ParseError):
    """A DATE or DATE-TIME value in an unexpected format."""


class GeoFormatError(ParseError):
    """A GEO value that is not a latitude;longitude pair."""


@dataclass
class Property:
    """One decoded content line, the key is upper case and value still escaped."""

    key: str
    params: dict[str, str] = field(default_factory=dict)
    value: str = ""


@dataclass(frozen=True)
class Alarm:
    """A VALARM reminder attached to an Event."""

    uid: str | None = None
    trigger: str | None = None
    action: str | None = "DISPLAY"
    description: str | None = None

    def to_ics(self) -> str:
        """Serialize the alarm as a VALARM block.

        The trigger is written as is if it already carries its value
        parameters (e.g. ";VALUE=DATE-TIME:19970317T133000Z").
        """
        lines = ["BEGIN:VALARM"]
        if self.uid:
            lines.append(f"UID:{self.uid}")
        trigger = self.trigger or ""
        lines.append(f"TRIGGER{trigger if ':' in trigger else ':' + trigger}")
        lines.append(f"ACTION:{self.action or 'DISPLAY'}")
        lines.append(f"DESCRIPTION:{self.description or ''}")
        lines.append("END:VALARM")
        return "\n".join(lines) + "\n"


@dataclass
class Event:
    """A VEVENT, every field is None until set."""

    summary: str | None = None
    dtstart: datetime | date | None = None
    dtend: datetime | date | None = None
    description: str | None = None
    location: str | None = None
    url: str | None = None
    uid: str | None = None
    status: str | None = None
    categories: list[str] | None = None
    class_: str | None = field(default=None, metadata={"ics": "CLASS"})
    comment: str | None = None
    geo: tuple[float, float] | None = None
    alarms: list[Alarm] | None = None
    tzid: str | None = None

    def to_ics(self) -> str:
        """Serialize the event as a VEVENT block.

        Properties are written in field order, alarms as nested VALARM
        blocks in list order.
        """
        contents = []
        for attr in fields(self):
            value = getattr(self, attr.name)
            if attr.name == "alarms":
                contents.extend(alarm.to_ics() for alarm in value or [])
            else:
                name = attr.metadata.get("ics", attr.name.upper())
                contents.append(ics_kv.build(name, value))
        return f"BEGIN:VEVENT\n{''.join(contents)}END:VEVENT\n"

    def astimezone(self, zone: tzinfo | None = None) -> "Event":
        """Return a copy with dtstart and dtend converted to zone.

        zone -- the target timezone (default: local timezone)
        Dates and naive datetimes are kept as they are.
        """
        zone = zone if zone else local_zone()
        changes = {}
        for name in ("dtstart", "dtend"):
            value = getattr(self, name)
            if isinstance(value, datetime) and value.tzinfo:
                changes[name] = value.astimezone(zone)
        if self.categories is not None:
            changes["categories"] = list(self.categories)
        if self.alarms is not None:
            changes["alarms"] = list(self.alarms)
        return replace(self, **changes)


class PartialAlarm:
    """Collects the properties of an open VALARM block.

    Any property name is accepted, only uid, trigger, action and
    description make it into the finished Alarm.
    """

    name = "VALARM"

    def __init__(self) -> None:
        self.fields: dict[str, str] = {}

    def set(self, key: str, value: str) -> None:
        """Store value verbatim under the lower case key."""
        self.fields[key.lower()] = value

    def to_alarm(self) -> Alarm:
        """Return the finished Alarm."""
        return Alarm(
            uid=self.fields.get("uid"),
            trigger=self.fields.get("trigger"),
            action=self.fields.get("action", "DISPLAY"),
            description=self.fields.get("description"),
        )

    def close(self, event: Event) -> None:
        """Add the finished alarm in front of the alarms of event."""
        event.alarms = [self.to_alarm()] + (event.alarms or [])


# Nested blocks by name, each closes itself into the event on END.
NESTED_BLOCKS = {"VALARM": PartialAlarm}

_TEXT_FIELDS = {
    "DESCRIPTION": "description",
    "SUMMARY": "summary",
    "LOCATION": "location",
    "COMMENT": "comment",
}
_LOWER_FIELDS = {"STATUS": "status", "CLASS": "class_"}
_VERBATIM_FIELDS = {"UID": "uid", "TZID": "tzid", "URL": "url"}
_DATE_FIELDS = {"DTSTART": "dtstart", "DTEND": "dtend"}


def split_lines(text: str) -> list[str]:
    """Split iCalendar text into lines, joining RFC 5545 folded lines.

    A line starting with a space or tab continues the previous one, the
    whitespace is dropped. Blank lines are skipped.
    """
    lines: list[str] = []
    for line in _LINE_BREAK.split(text):
        if lines and line[:1] in (" ", "\t"):
            lines[-1] += line[1:]
        elif line.strip():
            lines.append(line)
    return lines


def unfold_lines(lines: Iterable[str]) -> list[str]:
    """Merge continuation lines into the property line before them.

    Every line not starting with a property name (and optional parameters)
    followed by a colon is appended verbatim to the previous line. The
    first line always starts a new one.
    """
    unfolded: list[str] = []
    for line in lines:
        if unfolded and not _PROPERTY.match(line):
            unfolded[-1] += line
        else:
            unfolded.append(line)
    return unfolded


def _unquoted(text: str, sep: str) -> Iterator[int]:
    """Positions of sep outside of double quotes and not after a backslash."""
    quoted = escaped = False
    for pos, char in enumerate(text):
        if escaped:
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == '"':
            quoted = not quoted
        elif char == sep and not quoted:
            yield pos


def retrieve_params(key: str) -> tuple[str, dict[str, str]]:
    """Split the key part of a line into the name and its parameters.

    >>> retrieve_params("DTSTART;TZID=America/Chicago")
    ('DTSTART', {'TZID': 'America/Chicago'})

    A parameter without "=" gets an empty value, later duplicates win.
    """
    segments = []
    start = 0
    for pos in _unquoted(key, ";"):
        segments.append(key[start:pos])
        start = pos + 1
    segments.append(key[start:])
    segments = [segment for segment in segments if segment]

    if not segments:
        return "", {}

    params = {}
    for segment in segments[1:]:
        name, _, value = segment.partition("=")
        params[name] = value
    return segments[0], params


def retrieve_kvs(line: str) -> Property:
    """Split a logical line into key, parameters and raw value.

    >>> retrieve_kvs("lorem:ipsum")
    Property(key='LOREM', params={}, value='ipsum')
    """
    pos = next(_unquoted(line, ":"), None)
    if pos is None:
        # unbalanced quotes, fall back to the first colon
        pos = line.find(":")
    if pos < 0:
        raise MalformedLineError(f"Missing ':' in line: {line!r}")

    key, params = retrieve_params(line[:pos])
    return Property(key.upper(), params, line[pos + 1 :])


def desanitized(value: str) -> str:
    """Remove every backslash from value.

    This doesn't interpret escape sequences, "\\n" becomes "n".
    """
    return value.replace("\\", "")


def _database_zone(name: str | None) -> ZoneInfo | None:
    """ZoneInfo for a tz database name or a path into the database."""
    if not name:
        return None
    try:
        return ZoneInfo(name.split("zoneinfo/")[-1].lstrip(":"))
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return None


def _zone_name(zone: tzinfo) -> str | None:
    """Database name of a zoneinfo, pytz or dateutil timezone, if it has one."""
    for attr in ("key", "zone", "_filename"):
        name = getattr(zone, attr, None)
        if isinstance(name, str):
            return name
    return None


def local_zone() -> tzinfo:
    """Return the local timezone.

    This is a ZoneInfo if the database name of the zone is known (from TZ or
    the /etc/localtime link), otherwise what dateutil finds.
    """
    zone = tz.gettz()
    names = [_zone_name(zone)]
    if "TZ" not in environ:
        names.append(realpath("/etc/localtime"))
    for name in names:
        found = _database_zone(name)
        if found:
            return found
    return zone


def _zone(tzid: str) -> ZoneInfo:
    try:
        return ZoneInfo(tzid)
    except (ZoneInfoNotFoundError, ValueError, OSError) as error:
        raise DateFormatError(f"Unknown timezone: {tzid!r}") from error


def to_date(value: str, params: dict[str, str] | None = None) -> datetime | date:
    """Parse an iCalendar DATE or DATE-TIME value.

    value -- YYYYMMDD for VALUE=DATE, otherwise YYYYMMDDThhmmss[Z]
    params -- the property parameters, VALUE and TZID are used

    DATE-TIMEs are read as wall clock time in TZID (default: Etc/UTC), a
    trailing Z doesn't change that.
    """
    params = params if params else {}

    if params.get("VALUE") == "DATE":
        groups = _DATE.fullmatch(value)
        if not groups:
            raise DateFormatError(f"Expected YYYYMMDD, got {value!r}")
        try:
            return date(*(int(group) for group in groups.groups()))
        except ValueError as error:
            raise DateFormatError(f"Invalid date {value!r}: {error}") from error

    groups = _DATE_TIME.fullmatch(value)
    if not groups:
        raise DateFormatError(f"Expected YYYYMMDDThhmmss, got {value!r}")

    zone = _zone(params.get("TZID", DEFAULT_TZID))
    try:
        return datetime(*(int(group) for group in groups.groups()), tzinfo=zone)
    except ValueError as error:
        raise DateFormatError(f"Invalid date-time {value!r}: {error}") from error


def _leading_float(text: str) -> float:
    groups = _FLOAT_PREFIX.match(text)
    return float(groups[0]) if groups else 0.0


def to_geo(value: str) -> tuple[float, float]:
    """Parse a GEO value into (latitude, longitude).

    Segments without a leading number count as 0.0.
    """
    segments = desanitized(value).split(";")
    if len(segments) != 2:
        raise GeoFormatError(f"Expected latitude;longitude, got {value!r}")
    latitude, longitude = (_leading_float(segment) for segment in segments)
    return latitude, longitude


class EventBuilder:
    """Folds properties into an Event.

    Open nested blocks are kept on a stack, properties go to the innermost
    one until its END arrives.
    """

    def __init__(self) -> None:
        self.event = Event()
        self._stack: list[PartialAlarm] = []

    @property
    def in_alarm(self) -> bool:
        """Whether a VALARM block is open."""
        return bool(self._stack)

    def parse_attr(self, prop: Property) -> "EventBuilder":
        """Apply one property to the event or the open nested block."""
        block = prop.value
        if prop.key == "BEGIN" and block in NESTED_BLOCKS:
            self._stack.append(NESTED_BLOCKS[block]())
        elif prop.key == "END" and self._stack and self._stack[-1].name == block:
            self._stack.pop().close(self.event)
        elif self._stack:
            self._stack[-1].set(prop.key, prop.value)
        else:
            self._set_field(prop)
        return self

    def _set_field(self, prop: Property) -> None:
        event = self.event
        key = prop.key

        if key in _TEXT_FIELDS:
            setattr(event, _TEXT_FIELDS[key], desanitized(prop.value))
        elif key in _LOWER_FIELDS:
            setattr(event, _LOWER_FIELDS[key], desanitized(prop.value).lower())
        elif key in _VERBATIM_FIELDS:
            setattr(event, _VERBATIM_FIELDS[key], prop.value)
        elif key == "CATEGORIES":
            event.categories = desanitized(prop.value).split(",")
        elif key in _DATE_FIELDS:
            try:
                setattr(event, _DATE_FIELDS[key], to_date(prop.value, prop.params))
            except DateFormatError as error:
                _LOGGER.debug("Ignoring %s: %s", key, error)
        elif key == "GEO":
            try:
                event.geo = to_geo(prop.value)
            except GeoFormatError as error:
                _LOGGER.debug("Ignoring %s: %s", key, error)
        else:
            _LOGGER.debug("Ignoring unsupported property %s", key)

    def finish(self) -> Event:
        """Return the event, dropping blocks that were never closed."""
        for block in self._stack:
            _LOGGER.debug("Discarding unterminated %s block", block.name)
        self._stack.clear()
        return self.event


def build_event(lines: Iterable[str]) -> Event:
    """Build an Event from the lines of one VEVENT block.

    lines -- physical lines without line endings, BEGIN:VEVENT and
    END:VEVENT are optional
    Raises MalformedLineError for lines without a ':' separator, invalid
    dates and GEO values are skipped.
    """
    builder = EventBuilder()
    for line in unfold_lines(lines):
        builder.parse_attr(retrieve_kvs(line))
    return builder.finish()


def from_ics(text: str) -> Event:
    """Build an Event from the text of one VEVENT block."""
    return build_event(split_lines(text))


def to_vobject(event: Event) -> Component:
    """Return the vObject VEVENT component of an Event."""
    return readOne(event.to_ics())


def from_vobject(vevent: Component) -> Event:
    """Build an Event from a vObject VEVENT component.

    Aware start and end times are taken from the component directly, as
    vObject writes abbreviations like TZID=CST for dateutil timezones.
    """
    event = from_ics(vevent.serialize())
    for name in ("dtstart", "dtend"):
        if name not in vevent.contents:
            continue
        value = vevent.contents[name][0].value
        if isinstance(value, datetime) and value.tzinfo:
            zone = _database_zone(_zone_name(value.tzinfo))
            setattr(event, name, value.replace(tzinfo=zone) if zone else value)
    return event


def main(argv: list[str] | None = None) -> None:
    """Command line tool to normalize an iCalendar VEVENT."""
    from argparse import ArgumentParser, FileType
    from sys import stdin, stdout

    parser = ArgumentParser(description="Normalize an iCalendar VEVENT block.")
    parser.add_argument(
        "-z", "--zone", help="Timezone to convert dates to (default: keep)"
    )
    parser.add_argument(
        "-l",
        "--local",
        action="store_true",
        help="Convert dates to the local timezone",
    )
    parser.add_argument(
        "-a",
        "--alarm",
        type=int,
        default=0,
        help="Trigger time in minutes for an alarm added to events without one "
        "(default: 0, no alarm)",
    )
    parser.add_argument(
        "--vobject", action="store_true", help="Serialize through vobject"
    )
    parser.add_argument(
        "infile",
        nargs="?",
        type=FileType("r"),
        default=stdin,
        help="Input iCalendar file (default: stdin)",
    )
    parser.add_argument(
        "outfile",
        nargs="?",
        type=FileType("w"),
        default=stdout,
        help="Output iCalendar file (default: stdout)",
    )
    args = parser.parse_args(argv)

    event = from_ics(args.infile.read())

    if args.zone:
        event = event.astimezone(ZoneInfo(args.zone))
    elif args.local:
        event = event.astimezone()

    if args.alarm and not event.alarms:
        sign = "-" if args.alarm < 0 else ""
        event.alarms = [
            Alarm(trigger=f"{sign}PT{abs(args.alarm)}M", description=event.summary)
        ]

    if args.vobject:
        args.outfile.write(to_vobject(event).serialize())
    else:
        args.outfile.write(event.to_ics())
