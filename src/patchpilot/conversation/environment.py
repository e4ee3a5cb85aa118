import logging
import os
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from patchpilot.integrations.interfaces import FileSystem

logger = logging.getLogger(__name__)

MAX_LISTED_FILES = 200

type Clock = Callable[[], datetime]


def local_zone_name() -> str | None:
    """IANA name of the local time zone, from $TZ or the /etc/localtime symlink."""
    if tz := os.environ.get("TZ"):
        return tz.lstrip(":")
    localtime = Path("/etc/localtime")
    if localtime.is_symlink():
        target = localtime.resolve().as_posix()
        if "zoneinfo/" in target:
            return target.split("zoneinfo/", 1)[1]
    return None


def system_clock() -> datetime:
    name = local_zone_name()
    if name:
        try:
            return datetime.now(ZoneInfo(name))
        except (ZoneInfoNotFoundError, ValueError):
            logger.debug("Unknown time zone %r, using the fixed local offset", name)
    return datetime.now().astimezone()


def format_utc_offset(offset: timedelta | None) -> str:
    """'UTC-7:00', 'UTC+5:30', 'UTC+0:00'."""
    total_minutes = int((offset or timedelta()).total_seconds() // 60)
    sign = "-" if total_minutes < 0 else "+"
    hours, minutes = divmod(abs(total_minutes), 60)
    return f"UTC{sign}{hours}:{minutes:02d}"


def format_current_time(now: datetime) -> str:
    """e.g. '1/1/2024, 5:00:00 AM (America/Los_Angeles, UTC-8:00)'."""
    hour12 = now.hour % 12 or 12
    meridiem = "AM" if now.hour < 12 else "PM"
    stamp = f"{now.month}/{now.day}/{now.year}, {hour12}:{now.minute:02d}:{now.second:02d} {meridiem}"
    zone = getattr(now.tzinfo, "key", None) or now.tzname() or "UTC"
    return f"{stamp} ({zone}, {format_utc_offset(now.utcoffset())})"


def format_files_list(files: list[str], did_hit_limit: bool) -> str:
    if not files and not did_hit_limit:
        return "(No files found.)"
    listing = "\n".join(sorted(files))
    if did_hit_limit:
        listing += "\n\n(File list truncated. Use execute_command to explore specific subdirectories if needed.)"
    return listing


def build_environment_details(file_system: FileSystem, cwd: str, clock: Clock = system_clock) -> str:
    """Recomputed for every request; nothing here is cached between turns."""
    files, did_hit_limit = file_system.list_files(MAX_LISTED_FILES)
    details = f"# Current Time\n{format_current_time(clock())}"
    details += f"\n\n# Current Working Directory ({Path(cwd).as_posix()}) Files\n"
    details += format_files_list(files, did_hit_limit)
    return f"<environment_details>\n{details.strip()}\n</environment_details>"
