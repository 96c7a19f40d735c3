"""
Configuration parser for wallcal.

Handles TOML file parsing. Values changed at runtime (the sync window
widened by an extend request) are written to a JSON state file that
overlays the TOML values on the next load.
"""

import tomllib
import json
import os
import sys
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional


DEFAULT_REFRESH_MINUTES = 10
DEFAULT_SYNC_DAYS = 30
MAX_SYNC_DAYS = 365
DEFAULT_FEED_TIMEOUT = 30
DEFAULT_FEED_WORKERS = 4


@dataclass
class CalendarSelection:
    """A Google calendar chosen in the admin settings."""
    id: str
    label: str = ""
    color: str = ""
    enabled: bool = True


@dataclass
class IcalFeed:
    """Configuration for a read-only ICS feed."""
    url: str
    label: str = ""
    enabled: bool = True


def clamp_sync_days(value) -> int:
    """Clamp a sync window to 1..MAX_SYNC_DAYS days."""
    try:
        days = int(value)
    except (TypeError, ValueError):
        days = DEFAULT_SYNC_DAYS
    return min(max(days, 1), MAX_SYNC_DAYS)


def clamp_refresh_minutes(value) -> int:
    """Refresh interval in minutes, at least 1."""
    try:
        minutes = int(value)
    except (TypeError, ValueError):
        minutes = DEFAULT_REFRESH_MINUTES
    return max(minutes, 1)


@dataclass
class Config:
    """Main configuration container for wallcal."""

    state_file: Path
    cache_file: Path
    google_token_file: Optional[Path] = None
    refresh_minutes: int = DEFAULT_REFRESH_MINUTES
    sync_days: int = DEFAULT_SYNC_DAYS
    feed_timeout: float = DEFAULT_FEED_TIMEOUT
    feed_workers: int = DEFAULT_FEED_WORKERS
    calendars: list[CalendarSelection] = field(default_factory=list)
    ical_feeds: list[IcalFeed] = field(default_factory=list)
    config_path: Optional[Path] = None

    @classmethod
    def get_default_config_path(cls) -> Path:
        """Get the default configuration file path."""
        xdg_config = os.environ.get('XDG_CONFIG_HOME', os.path.expanduser('~/.config'))
        return Path(xdg_config) / 'wallcal' / 'wallcal.toml'

    @classmethod
    def get_default_state_path(cls) -> Path:
        """Get the default state file path."""
        xdg_state = os.environ.get('XDG_STATE_HOME', os.path.expanduser('~/.local/state'))
        return Path(xdg_state) / 'wallcal' / 'state.json'

    @classmethod
    def get_default_data_dir(cls) -> Path:
        xdg_data = os.environ.get('XDG_DATA_HOME', os.path.expanduser('~/.local/share'))
        return Path(xdg_data) / 'wallcal'

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> 'Config':
        """Load configuration from TOML file, then apply the state file."""
        if config_path is None:
            config_path = cls.get_default_config_path()

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'rb') as f:
            data = tomllib.load(f)

        config = cls.from_dict(data)
        config.config_path = config_path
        config.apply_state()
        return config

    @classmethod
    def from_dict(cls, data: dict) -> 'Config':
        """Build a Config from parsed TOML data (no state overlay)."""
        general = data.get('General', {})
        google = data.get('Google', {})
        data_dir = cls.get_default_data_dir()

        state_file = Path(os.path.expanduser(
            general.get('state_file', str(cls.get_default_state_path()))
        ))
        cache_file = Path(os.path.expanduser(
            general.get('cache_file', str(data_dir / 'events.json'))
        ))
        token_file = Path(os.path.expanduser(
            google.get('token_file', str(data_dir / 'google-token.json'))
        ))

        # Both [Calendar.name] tables and quoted ["Calendar.name"] keys are accepted
        calendars = []
        for key, value in _sections(data, 'Calendar'):
            calendars.append(CalendarSelection(
                id=str(value.get('id', key)),
                label=str(value.get('label', '')),
                color=str(value.get('color', '')),
                enabled=bool(value.get('enabled', True)),
            ))

        ical_feeds = []
        for key, value in _sections(data, 'Feed'):
            ical_feeds.append(IcalFeed(
                url=str(value.get('url', '')),
                label=str(value.get('label', '')),
                enabled=bool(value.get('enabled', True)),
            ))

        return cls(
            state_file=state_file,
            cache_file=cache_file,
            google_token_file=token_file,
            refresh_minutes=clamp_refresh_minutes(general.get('refresh_minutes', DEFAULT_REFRESH_MINUTES)),
            sync_days=clamp_sync_days(general.get('sync_days', DEFAULT_SYNC_DAYS)),
            feed_timeout=float(general.get('feed_timeout', DEFAULT_FEED_TIMEOUT)),
            feed_workers=max(1, int(general.get('feed_workers', DEFAULT_FEED_WORKERS))),
            calendars=calendars,
            ical_feeds=ical_feeds,
        )

    def reload(self) -> 'Config':
        """Re-read the configuration file; configs built in code only re-read state."""
        if self.config_path is not None:
            return Config.load(self.config_path)
        self.apply_state()
        return self

    # ==================== State ====================

    def _load_state(self) -> dict:
        if not self.state_file.exists():
            return {}
        try:
            with open(self.state_file, 'r', encoding='utf-8') as f:
                state = json.load(f)
        except (OSError, ValueError) as e:
            print(f"Error loading state: {e}", file=sys.stderr)
            return {}
        return state if isinstance(state, dict) else {}

    def apply_state(self) -> None:
        """Overlay runtime state (currently only sync_days)."""
        state = self._load_state()
        if 'sync_days' in state:
            self.sync_days = clamp_sync_days(state['sync_days'])

    def save_sync_days(self, days: int) -> int:
        """
        Persist a new sync window.

        Returns:
            The stored (clamped) number of days.
        """
        days = clamp_sync_days(days)
        state = self._load_state()
        state['sync_days'] = days
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.state_file, 'w', encoding='utf-8') as f:
            json.dump(state, f, indent=2)
        self.sync_days = days
        return days


def _sections(data: dict, prefix: str):
    """Yield (name, table) for [Prefix.name] tables in either TOML layout."""
    for key, value in data.items():
        if key.startswith(f'{prefix}.') and isinstance(value, dict):
            yield key.split('.', 1)[1], value
        elif key == prefix and isinstance(value, dict):
            for sub_key, sub_value in value.items():
                if isinstance(sub_value, dict):
                    yield sub_key, sub_value
