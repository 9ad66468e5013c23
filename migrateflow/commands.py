"""Implementation of the command-line commands."""

from __future__ import annotations

import fnmatch
import glob
import os
from datetime import datetime
from typing import Optional, Sequence

from .cli_log import CliLog
from .migrator import Migrator, NoChangeError

__all__ = [
    "DEFAULT_TIME_FORMAT",
    "DEFAULT_TIMEZONE",
    "CommandError",
    "create_cmd",
    "create_file",
    "down_cmd",
    "drop_cmd",
    "force_cmd",
    "format_go_time",
    "goto_cmd",
    "logger",
    "next_seq_version",
    "num_down_migrations_from_args",
    "time_version",
    "up_cmd",
    "version_cmd",
]

#: Layout used for timestamped migration versions.
DEFAULT_TIME_FORMAT = "20060102150405"
DEFAULT_TIMEZONE = "UTC"

#: Logger the commands report through.
logger = CliLog()

_MAX_UINT64 = 2**64 - 1

_MONTHS = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]
_WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

# Longest alternatives first so that prefixes do not shadow them.
_TOKENS = (
    "January", "Jan", "Monday", "Mon", "MST",
    "2006", "002", "01", "02", "03", "04", "05", "06",
    "15", "1", "2", "__2", "_2", "3", "4", "5", "PM", "pm",
    "-07:00:00", "-070000", "-07:00", "-0700", "-07",
    "Z07:00:00", "Z070000", "Z07:00", "Z0700", "Z07",
)


class CommandError(Exception):
    """A command could not be carried out because of its arguments or files."""


def _format_offset(seconds: int, token: str) -> str:
    if token.startswith("Z") and seconds == 0:
        return "Z"
    sign = "-" if seconds < 0 else "+"
    seconds = abs(seconds)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    shape = token[1:]
    if shape == "07":
        return f"{sign}{hours:02d}"
    if shape == "0700":
        return f"{sign}{hours:02d}{minutes:02d}"
    if shape == "07:00":
        return f"{sign}{hours:02d}:{minutes:02d}"
    if shape == "070000":
        return f"{sign}{hours:02d}{minutes:02d}{secs:02d}"
    return f"{sign}{hours:02d}:{minutes:02d}:{secs:02d}"


def _render(token: str, moment: datetime) -> str:
    hour12 = moment.hour % 12 or 12
    yday = moment.timetuple().tm_yday
    simple = {
        "January": _MONTHS[moment.month - 1],
        "Jan": _MONTHS[moment.month - 1][:3],
        "Monday": _WEEKDAYS[moment.weekday()],
        "Mon": _WEEKDAYS[moment.weekday()][:3],
        "2006": f"{moment.year:04d}",
        "06": f"{moment.year % 100:02d}",
        "01": f"{moment.month:02d}",
        "1": str(moment.month),
        "02": f"{moment.day:02d}",
        "2": str(moment.day),
        "_2": f"{moment.day:>2}",
        "002": f"{yday:03d}",
        "__2": f"{yday:>3}",
        "15": f"{moment.hour:02d}",
        "03": f"{hour12:02d}",
        "3": str(hour12),
        "04": f"{moment.minute:02d}",
        "4": str(moment.minute),
        "05": f"{moment.second:02d}",
        "5": str(moment.second),
        "PM": "PM" if moment.hour >= 12 else "AM",
        "pm": "pm" if moment.hour >= 12 else "am",
    }
    if token in simple:
        return simple[token]

    zoned = moment if moment.tzinfo is not None else moment.astimezone()
    delta = zoned.utcoffset()
    offset = int(delta.total_seconds()) if delta is not None else 0
    if token == "MST":
        name = zoned.tzname()
        if name:
            return name
        return _format_offset(offset, "-0700")
    return _format_offset(offset, token)


def _fraction(layout: str, i: int) -> Optional[int]:
    """Return the end of a fractional-second chunk starting at ``i``, if any."""
    if i + 1 >= len(layout) or layout[i + 1] not in "09":
        return None
    digit = layout[i + 1]
    end = i + 1
    while end < len(layout) and layout[end] == digit:
        end += 1
    if end < len(layout) and layout[end].isdigit():
        return None
    return end


def format_go_time(moment: datetime, layout: str) -> str:
    """Format ``moment`` using a reference-time layout such as ``20060102150405``."""
    out = []
    i = 0
    while i < len(layout):
        if layout.startswith("_2006", i):
            out.append("_")
            i += 1
            continue
        if layout[i] in ".,":
            end = _fraction(layout, i)
            if end is not None:
                digits = min(end - i - 1, 9)
                nanos = f"{moment.microsecond * 1000:09d}"[:digits]
                if layout[i + 1] == "9":
                    nanos = nanos.rstrip("0")
                    if nanos:
                        out.append(layout[i] + nanos)
                else:
                    out.append(layout[i] + nanos)
                i = end
                continue
        token = next((t for t in _TOKENS if layout.startswith(t, i)), None)
        if token is None:
            out.append(layout[i])
            i += 1
            continue
        out.append(_render(token, moment))
        i += len(token)
    return "".join(out)


def _parse_uint(text: str) -> int:
    if not text or any(ch not in "0123456789" for ch in text):
        raise CommandError(f'strconv.ParseUint: parsing "{text}": invalid syntax')
    value = int(text)
    if value > _MAX_UINT64:
        raise CommandError(f'strconv.ParseUint: parsing "{text}": value out of range')
    return value


def _glob(directory: str, pattern: str) -> list[str]:
    """Sorted paths in ``directory`` whose names match ``pattern``."""
    try:
        entries = os.listdir(directory)
    except OSError:
        return []
    return sorted(
        os.path.normpath(os.path.join(directory, entry))
        for entry in entries
        if fnmatch.fnmatchcase(entry, pattern)
    )


def next_seq_version(matches: Sequence[str], seq_digits: int) -> str:
    """Return the zero-padded sequence number following the last of ``matches``."""
    if seq_digits <= 0:
        raise CommandError("Digits must be positive")

    next_seq = 1
    if matches:
        filename = matches[-1]
        base = os.path.basename(filename.rstrip("/" + os.sep)) or filename
        idx = base.find("_")
        # At least one digit must precede the underscore.
        if idx < 1:
            raise CommandError(f"Malformed migration filename: {filename}")
        next_seq = _parse_uint(base[:idx]) + 1

    version = f"{next_seq:0{seq_digits}d}"
    if len(version) > seq_digits:
        raise CommandError(
            f"Next sequence number {version} too large. At most {seq_digits} digits are allowed"
        )
    return version


def time_version(start_time: datetime, fmt: str) -> str:
    """Return a version string for ``start_time``: unix seconds, nanoseconds or a layout."""
    if fmt == "":
        raise CommandError("Time format may not be empty")
    seconds = int(start_time.replace(microsecond=0).timestamp())
    if fmt == "unix":
        return str(seconds)
    if fmt == "unixNano":
        return str(seconds * 1_000_000_000 + start_time.microsecond * 1000)
    return format_go_time(start_time, fmt)


def create_file(filename: str) -> None:
    """Create an empty file, failing if it already exists."""
    with open(filename, "x"):
        pass


def create_cmd(
    directory: str,
    start_time: datetime,
    fmt: str,
    name: str,
    ext: str,
    seq: bool,
    seq_digits: int,
    print_paths: bool,
) -> None:
    """Create a pair of empty up/down migration files in ``directory``."""
    if seq and fmt != DEFAULT_TIME_FORMAT:
        raise CommandError("The seq and format options are mutually exclusive")

    directory = os.path.normpath(directory)
    ext = "." + ext.removeprefix(".")

    if seq:
        matches = _glob(directory, "*" + glob.escape(ext))
        version = next_seq_version(matches, seq_digits)
    else:
        version = time_version(start_time, fmt)

    if _glob(directory, glob.escape(version) + "_*" + glob.escape(ext)):
        raise CommandError(f"duplicate migration version: {version}")

    os.makedirs(directory, exist_ok=True)

    for direction in ("up", "down"):
        filename = os.path.join(directory, f"{version}_{name}.{direction}{ext}")
        create_file(filename)
        if print_paths:
            logger.println(os.path.abspath(filename))


def goto_cmd(migrator: Migrator, version: int) -> None:
    """Migrate to ``version``; an unchanged database is reported, not raised."""
    try:
        migrator.migrate(version)
    except NoChangeError as exc:
        logger.println(exc)


def up_cmd(migrator: Migrator, limit: int) -> None:
    """Apply ``limit`` up migrations, or all of them when ``limit`` is negative."""
    try:
        if limit >= 0:
            migrator.steps(limit)
        else:
            migrator.up()
    except NoChangeError as exc:
        logger.println(exc)


def down_cmd(migrator: Migrator, limit: int) -> None:
    """Apply ``limit`` down migrations, or all of them when ``limit`` is negative."""
    try:
        if limit >= 0:
            migrator.steps(-limit)
        else:
            migrator.down()
    except NoChangeError as exc:
        logger.println(exc)


def drop_cmd(migrator: Migrator) -> None:
    """Drop everything in the database."""
    migrator.drop()


def force_cmd(migrator: Migrator, version: int) -> None:
    """Set the database version without running migrations."""
    migrator.force(version)


def version_cmd(migrator: Migrator) -> None:
    """Print the current version, marking it when dirty."""
    version, dirty = migrator.version()
    if dirty:
        logger.printf("%s (dirty)\n", version)
    else:
        logger.println(version)


def num_down_migrations_from_args(apply_all: bool, args: Sequence[str]) -> tuple[int, bool]:
    """Return ``(count, needs_confirm)`` for the down command; -1 means all."""
    if apply_all:
        if args:
            raise CommandError("-all cannot be used with other arguments")
        return -1, False

    if len(args) == 0:
        return -1, True
    if len(args) == 1:
        try:
            return _parse_uint(args[0]), False
        except CommandError:
            raise CommandError("can't read limit argument N") from None
    raise CommandError("too many arguments")