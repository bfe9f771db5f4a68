"""Stream targets — the logical streams the monitor resolves and probes."""

from .registry import HashTarget, StreamRegistry, StreamsConfig, StreamTarget, TargetMode, UrlTarget
