"""
SocialTrust — Metric Validators
Each validator answers one yes/no question about an identity.

Validators return raw facts (a signal plus metadata). No scoring here.
Transport failures propagate as-is so the caller can retry them;
anything else that stops a check raises ValidatorFailure.

    nip05_valid        identifier resolves to the identity's key
    lightning_address  profile carries a well-formed lud16 / lud06
    relay_list         identity published a relay list (kind 10002)
    reciprocity        source and target follow each other
"""
import re
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import httpx
import structlog

from socialtrust.compute.sources import RELAY_LIST_KIND, EventSource, FollowGraph
from socialtrust.errors import ValidatorFailure
from socialtrust.models import ValidationOutcome

logger = structlog.get_logger()

# Timeout for all external calls
_TIMEOUT = httpx.Timeout(10.0, connect=5.0)

_ADDRESS_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_DOMAIN_RE = re.compile(r"^[a-zA-Z0-9.-]+$")
_LOCAL_RE = re.compile(r"^[a-zA-Z0-9._+-]+$")
_LNURL_RE = re.compile(r"^lnurl1[ac-hj-np-z02-9]{8,}$")


def _split_address(address: str) -> Optional[tuple]:
    """(local, domain) for a well-formed user@domain.tld, else None."""
    if not isinstance(address, str) or not _ADDRESS_RE.match(address):
        return None
    local, domain = address.rsplit("@", 1)
    if not _LOCAL_RE.match(local) or not _DOMAIN_RE.match(domain):
        return None
    if domain.startswith(".") or domain.endswith(".") or ".." in domain:
        return None
    return local, domain.lower()


def normalize_nip05(identifier: str) -> str:
    """Domain-only identifiers mean the root name: example.com → _@example.com"""
    identifier = identifier.strip()
    return identifier if "@" in identifier else f"_@{identifier}"


# ── 1. NIP-05 (identity verification) ────────────

async def validate_nip05(pubkey: str, profile: Dict[str, Any], client: httpx.AsyncClient) -> ValidationOutcome:
    raw = (profile or {}).get("nip05")
    if not raw:
        return ValidationOutcome(False, {"reason": "no nip05 in profile"})

    identifier = normalize_nip05(str(raw))
    parts = _split_address(identifier)
    if parts is None:
        return ValidationOutcome(False, {"nip05": raw, "reason": "invalid format"})
    local, domain = parts

    resp = await client.get(
        f"https://{domain}/.well-known/nostr.json",
        params={"name": local},
        headers={"Accept": "application/json"},
        timeout=_TIMEOUT,
    )
    if resp.status_code == 404:
        return ValidationOutcome(False, {"nip05": raw, "domain": domain, "reason": "not found"})
    if resp.status_code != 200:
        raise ValidatorFailure("nip05_valid", f"{domain} answered HTTP {resp.status_code}", pubkey)

    try:
        names = resp.json().get("names") or {}
    except (ValueError, AttributeError):
        raise ValidatorFailure("nip05_valid", f"{domain} returned malformed nostr.json", pubkey)

    resolved = names.get(local) or names.get(local.lower())
    valid = isinstance(resolved, str) and resolved.lower() == pubkey.lower()
    logger.debug("nip05_checked", nip05=raw, valid=valid)
    return ValidationOutcome(valid, {"nip05": raw, "domain": domain, "resolved_pubkey": resolved})


# ── 2. Lightning (payment address) ────────────────

def _valid_lnurl(lnurl: str) -> bool:
    lowered = lnurl.strip().lower()
    if lowered.startswith("lnurl"):
        return bool(_LNURL_RE.match(lowered))
    parsed = urlparse(lnurl.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


async def validate_lightning(
    profile: Dict[str, Any],
    client: Optional[httpx.AsyncClient] = None,
    check_connectivity: bool = False,
) -> ValidationOutcome:
    profile = profile or {}

    if profile.get("lud16"):
        address = str(profile["lud16"]).strip()
        parts = _split_address(address)
        if parts is None:
            return ValidationOutcome(False, {"address": address, "type": "lud16", "reason": "invalid format"})
        if check_connectivity and client is not None:
            user, domain = parts
            resp = await client.get(f"https://{domain}/.well-known/lnurlp/{user}", timeout=_TIMEOUT)
            if resp.status_code != 200:
                return ValidationOutcome(False, {
                    "address": address, "type": "lud16",
                    "reason": f"lnurlp endpoint answered HTTP {resp.status_code}",
                })
        return ValidationOutcome(True, {"address": address, "type": "lud16"})

    if profile.get("lud06"):
        lnurl = str(profile["lud06"]).strip()
        valid = _valid_lnurl(lnurl)
        meta = {"address": lnurl[:40], "type": "lud06"}
        if not valid:
            meta["reason"] = "invalid format"
        return ValidationOutcome(valid, meta)

    return ValidationOutcome(False, {"reason": "no lightning address"})


# ── 3. Relay list presence ────────────────────────

async def validate_relay_list(pubkey: str, events: EventSource) -> ValidationOutcome:
    event = await events.latest_event(pubkey, RELAY_LIST_KIND)
    if not event:
        return ValidationOutcome(False, {"kind": RELAY_LIST_KIND})
    return ValidationOutcome(True, {
        "kind": RELAY_LIST_KIND,
        "event_id": event.get("id"),
        "created_at": event.get("created_at"),
    })


# ── 4. Reciprocity (mutual follow) ────────────────

async def validate_reciprocity(source: str, target: str, graph: FollowGraph) -> ValidationOutcome:
    forward = await graph.is_following(source, target)
    backward = await graph.is_following(target, source)
    if forward is None or backward is None:
        return ValidationOutcome(False, {
            "unknown": True,
            "source_follows_target": forward,
            "target_follows_source": backward,
        })
    return ValidationOutcome(forward and backward, {
        "source_follows_target": forward,
        "target_follows_source": backward,
    })
