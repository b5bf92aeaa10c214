import json
from datetime import datetime
from pathlib import Path

import pytz

CONFIG_DIR = Path.home() / ".vehicle-auctions"
CONFIG_FILE = CONFIG_DIR / "config.json"


def get_timezone() -> str:
    """Get display timezone from config, or use system local timezone."""
    if CONFIG_FILE.exists():
        config = json.loads(CONFIG_FILE.read_text())
        configured_tz = config.get("timezone")
        if configured_tz:
            return configured_tz

    # /etc/localtime is a symlink into a zoneinfo directory on Linux and macOS
    localtime_path = Path("/etc/localtime")
    if localtime_path.exists():
        parts = localtime_path.resolve().parts
        for zoneinfo_name in ["zoneinfo", "zoneinfo.default"]:
            if zoneinfo_name in parts:
                tz_name = "/".join(parts[parts.index(zoneinfo_name) + 1:])
                if tz_name:
                    return tz_name

    return "UTC"


def to_local_time(value: datetime, tz_name: str = None) -> str:
    """Format a naive UTC datetime in the display timezone."""
    if value is None:
        return "-"
    tz = pytz.timezone(tz_name or get_timezone())
    return pytz.utc.localize(value).astimezone(tz).strftime("%Y-%m-%d %H:%M:%S %Z")


def parse_local_time(value: str, tz_name: str = None) -> datetime:
    """
    Parse an ISO-8601 timestamp entered by an operator into naive UTC.

    Timestamps without an offset are read in the display timezone.
    """
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = pytz.timezone(tz_name or get_timezone()).localize(parsed)
    return parsed.astimezone(pytz.utc).replace(tzinfo=None)
