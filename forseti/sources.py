"""Kinds of external data sources and their connection settings."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum


class ConnectorType(str, Enum):
    """The kinds of external feeds a context can be built for."""

    GTFS_RT = "gtfsrt"
    ODITI = "oditi"


def _duration(value):
    return value if isinstance(value, timedelta) else timedelta(seconds=value)


@dataclass
class ExternalSource:
    """Where to fetch external data and how often."""

    files_uri: str
    url: str
    token: str
    refresh_time: timedelta
    connection_timeout: timedelta

    def __post_init__(self):
        self.refresh_time = _duration(self.refresh_time)
        self.connection_timeout = _duration(self.connection_timeout)

    @property
    def refresh_seconds(self):
        return self.refresh_time.total_seconds()

    @property
    def timeout_seconds(self):
        return self.connection_timeout.total_seconds()