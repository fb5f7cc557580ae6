"""Output sinks for scraped servers."""

from .json_sink import JsonSink
from .log_sink import LogSink

__all__ = ["JsonSink", "LogSink"]
