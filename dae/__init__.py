"""Transparent proxy building blocks: constants, DNS upstreams, subscriptions, system dumps and control commands."""

__version__ = "0.1.0"

__all__ = [
    "assets",
    "bitlist",
    "cli",
    "consts",
    "dnsconfig",
    "fuzzy_json",
    "privilege",
    "resolver",
    "subscription",
    "sysdump",
    "upstream",
    "utils",
]