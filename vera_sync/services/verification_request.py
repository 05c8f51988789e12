# vera_sync/services/verification_request.py
import json
import logging
from typing import Any, Dict, Mapping, Optional

from web3 import Web3

logger = logging.getLogger(__name__)

# compiler settings keys the Sourcify server rejects in standard JSON input
UNSUPPORTED_SETTINGS = ("compilationTarget",)

_LANGUAGES = {
    "solidity": "Solidity",
    "vyper": "Vyper",
    "yul": "Yul",
}


def to_hex(raw: Optional[bytes]) -> Optional[str]:
    """0x-prefixed lowercase hex of raw bytes (None passes through)."""
    if raw is None:
        return None
    return Web3.to_hex(bytes(raw))


def hex_address(raw: Optional[bytes]) -> Optional[str]:
    """Checksummed 0x address from the 20 raw bytes stored in the database."""
    if raw is None:
        return None
    return Web3.to_checksum_address(to_hex(raw))


def _settings(compilation: Mapping[str, Any]) -> Dict[str, Any]:
    raw = compilation.get("compiler_settings") or {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(
                "Failed to parse compiler_settings, sending empty settings",
                extra={"compilation_id": compilation.get("id")},
            )
            raw = {}
    # copy so the closure row is left untouched
    settings = dict(raw)
    for key in UNSUPPORTED_SETTINGS:
        settings.pop(key, None)
    return settings


def build_verification_request(closure, sources: Mapping[str, str]) -> Dict[str, Any]:
    """
    Body for POST /v2/verify/{chainId}/{address}.

    `sources` maps the source path to its content.
    """
    compilation = closure.compilation
    language = (compilation.get("language") or "").lower()
    body: Dict[str, Any] = {
        "stdJsonInput": {
            "language": _LANGUAGES.get(language, compilation.get("language")),
            "sources": {path: {"content": content} for path, content in sources.items()},
            "settings": _settings(compilation),
        },
        "compilerVersion": compilation["version"],
        "contractIdentifier": compilation.get("fully_qualified_name") or compilation["name"],
    }
    tx_hash = closure.deployment.get("transaction_hash")
    if tx_hash is not None:
        body["creationTransactionHash"] = to_hex(tx_hash)
    return body
