"""
Read-only MCP resources backed by the reference data cache.

    topstepx://account/             all cached accounts
    topstepx://account/{id}         one account
    topstepx://position/            all positions
    topstepx://position/{accountId} positions of one account
"""

import json
import logging
import re
from typing import List, Optional, Tuple

import mcp.types as types

from .cache import ReferenceDataCache
from .config import RESOURCE_SCHEME
from .errors import NotFoundError, ValidationError

logger = logging.getLogger("topstepx-mcp.resources")

_URI_PATTERN = re.compile(rf"^{RESOURCE_SCHEME}://([^/]+)(?:/(.*))?$")

ACCOUNTS_URI = f"{RESOURCE_SCHEME}://account/"
POSITIONS_URI = f"{RESOURCE_SCHEME}://position/"

RESOURCES: List[types.Resource] = [
    types.Resource(
        uri=ACCOUNTS_URI,
        name="TopstepX Accounts",
        description="Trading accounts on TopstepX",
        mimeType="application/json",
    ),
    types.Resource(
        uri=POSITIONS_URI,
        name="TopstepX Positions",
        description="Current positions in your TopstepX accounts",
        mimeType="application/json",
    ),
]

RESOURCE_TEMPLATES: List[types.ResourceTemplate] = [
    types.ResourceTemplate(
        uriTemplate=f"{RESOURCE_SCHEME}://account/{{id}}",
        name="TopstepX Account",
        description="A single trading account by ID",
        mimeType="application/json",
    ),
    types.ResourceTemplate(
        uriTemplate=f"{RESOURCE_SCHEME}://position/{{accountId}}",
        name="TopstepX Account Positions",
        description="Current positions of a single account",
        mimeType="application/json",
    ),
]


def parse_resource_uri(uri: str) -> Tuple[str, Optional[str]]:
    """Split a resource URI into its type and optional id."""
    match = _URI_PATTERN.match(uri)
    if not match:
        raise ValidationError(f"Invalid resource URI: {uri}")
    return match.group(1), (match.group(2) or "").strip("/") or None


def _parse_id(resource_id: str) -> int:
    try:
        return int(resource_id)
    except ValueError:
        raise ValidationError(f"Invalid ID in resource URI: {resource_id}") from None


async def read_resource(cache: ReferenceDataCache, uri: str) -> str:
    """
    Render a resource as JSON text.

    Raises:
        ValidationError: Malformed URI or id
        NotFoundError: Unknown resource type or account
    """
    logger.debug(f"Reading resource {uri}")
    resource_type, resource_id = parse_resource_uri(uri)

    if resource_type == "account":
        if resource_id is None:
            return json.dumps([a.to_json() for a in cache.accounts_list()], indent=2)
        account = cache.get_account(_parse_id(resource_id))
        if account is None:
            raise NotFoundError(f"Account not found: {resource_id}")
        return json.dumps(account.to_json(), indent=2)

    if resource_type == "position":
        account_id = _parse_id(resource_id) if resource_id is not None else None
        positions = await cache.get_positions(account_id)
        return json.dumps([p.to_json() for p in positions], indent=2)

    raise NotFoundError(f"Unknown resource type: {resource_type}")
