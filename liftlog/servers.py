"""Parsing of NATS server addresses given on the command line."""

from __future__ import annotations

from typing import Iterable, List, Optional


def normalize_nats_servers(servers: Optional[Iterable[str]]) -> Optional[List[str]]:
    """Split comma separated server lists and strip whitespace.

    Each item may hold several addresses separated by commas; blank
    addresses are dropped. None yields None.
    """
    if servers is None:
        return None
    return [
        address
        for item in servers
        for address in (part.strip() for part in item.split(","))
        if address
    ]