"""
Utility functions for the demo wallet

Mock key material, format validators, fee estimation and amount helpers.

Mnemonics are only shaped like BIP39 phrases and are not derived into keys.
Addresses and invoices, on the other hand, are checked properly: Base58Check
and bech32 checksums for addresses, a full BOLT11 decode for invoices.
"""

import re
import secrets
from typing import Any, Optional

import base58
from bech32 import bech32_decode
from bech32 import decode as segwit_decode
from bolt11 import decode as bolt11_decode
from bolt11.exceptions import Bolt11Exception

from vault.errors import InvalidInput

MNEMONIC_WORD_COUNT = 12
MIN_FEE_SATS = 1000

# Head of the BIP39 English list; enough variety for a demo phrase.
WORD_LIST = (
    "abandon", "ability", "able", "about", "above", "absent", "absorb", "abstract",
    "absurd", "abuse", "access", "accident", "account", "accuse", "achieve", "acid",
    "acoustic", "acquire", "across", "act", "action", "actor", "actress", "actual",
    "adapt", "add", "addict", "address", "adjust", "admit", "adult", "advance",
    "advice", "aerobic", "affair", "afford", "afraid", "again", "age", "agent",
    "agree", "ahead", "aim", "air", "airport", "aisle", "alarm", "album", "alcohol",
    "alert", "alien", "all", "alley", "allow", "almost", "alone", "alpha", "already",
    "also", "alter", "always", "amateur", "amazing", "among", "amount", "amused",
    "analyst", "anchor", "ancient", "anger", "angle", "angry", "animal", "ankle",
    "announce", "annual", "another", "answer", "antenna", "antique", "anxiety",
    "any", "apart", "apology", "appear", "apple", "approve", "april", "arch",
    "arctic", "area", "arena", "argue", "arm", "armed", "armor", "army", "around",
    "arrange", "arrest", "arrive", "arrow", "art", "artefact", "artist", "artwork",
)
_WORD_SET = frozenset(WORD_LIST)

# Base58Check version bytes: mainnet P2PKH/P2SH, testnet P2PKH/P2SH
P2PKH_VERSION = b"\x00"
_LEGACY_VERSIONS = frozenset({0x00, 0x05, 0x6F, 0xC4})
_SEGWIT_HRPS = frozenset({"bc", "tb", "bcrt"})

_LEGACY_ADDRESS_RE = re.compile(r"^[13mn2][a-km-zA-HJ-NP-Z1-9]{25,34}$")


def generate_mnemonic() -> str:
    """Draw a 12-word phrase from the word list."""
    return " ".join(secrets.choice(WORD_LIST) for _ in range(MNEMONIC_WORD_COUNT))


def normalize_mnemonic(mnemonic: str) -> str:
    return " ".join(mnemonic.strip().lower().split())


def validate_mnemonic(mnemonic: str) -> bool:
    """
    Check word count and word-list membership.

    Args:
        mnemonic: Space separated recovery phrase

    Returns:
        True if the phrase has exactly 12 known words
    """
    if not mnemonic:
        return False
    words = normalize_mnemonic(mnemonic).split(" ")
    return len(words) == MNEMONIC_WORD_COUNT and all(word in _WORD_SET for word in words)


def generate_address() -> str:
    """P2PKH address for a random 20-byte hash (no key behind it)."""
    return base58.b58encode_check(P2PKH_VERSION + secrets.token_bytes(20)).decode()


def _validate_legacy_address(address: str) -> bool:
    if not _LEGACY_ADDRESS_RE.fullmatch(address):
        return False
    try:
        payload = base58.b58decode_check(address)
    except ValueError:
        return False
    return len(payload) == 21 and payload[0] in _LEGACY_VERSIONS


def _validate_segwit_address(address: str) -> bool:
    hrp, data = bech32_decode(address)
    if hrp not in _SEGWIT_HRPS or data is None:
        return False
    # decode() also checks witness version and program length
    _, program = segwit_decode(hrp, address)
    return program is not None


def validate_address(address: str) -> bool:
    """True for a Base58Check P2PKH/P2SH address or a bech32 segwit v0 address."""
    if not address or not isinstance(address, str):
        return False
    return _validate_legacy_address(address) or _validate_segwit_address(address)


def generate_node_id() -> str:
    """Compressed-pubkey-shaped remote node id (66 hex chars)."""
    return "02" + secure_random_hex(32)


def secure_random_hex(nbytes: int = 32) -> str:
    return secrets.token_hex(nbytes)


def decode_invoice_amount(payment_request: str) -> int:
    """
    Decode a BOLT11 invoice and return its amount.

    The checksum and signature are verified by ``bolt11``; anything that does
    not decode is rejected.

    Args:
        payment_request: BOLT11 invoice string

    Returns:
        Amount in sats (rounded down), or 0 for amountless invoices

    Raises:
        InvalidInput: if the string is not a valid invoice
    """
    if not payment_request or not isinstance(payment_request, str):
        raise InvalidInput("Invalid Lightning invoice")
    try:
        invoice = bolt11_decode(payment_request.strip())
    except (Bolt11Exception, ValueError) as exc:
        raise InvalidInput("Invalid Lightning invoice", details={"reason": str(exc)}) from exc
    return int(invoice.amount_msat or 0) // 1000


def validate_payment_request(payment_request: str) -> bool:
    """True if the string decodes as a BOLT11 invoice."""
    try:
        decode_invoice_amount(payment_request)
    except InvalidInput:
        return False
    return True


def estimate_fee(amount: int) -> int:
    """Mock on-chain fee: 1% of the amount, never below 1000 sats."""
    return max(amount // 100, MIN_FEE_SATS)


def parse_amount(value: Any, name: str = "amount", minimum: int = 1) -> int:
    """
    Parse an integer sats amount from request input.

    Accepts ints and strings of digits. Booleans, fractional numbers and
    anything non-numeric are rejected.
    """
    if isinstance(value, bool) or value is None:
        raise InvalidInput(f"{name} must be an integer number of sats")

    if isinstance(value, int):
        amount = value
    elif isinstance(value, float) and value.is_integer():
        amount = int(value)
    elif isinstance(value, str) and re.fullmatch(r"\s*-?\d+\s*", value):
        amount = int(value)
    else:
        raise InvalidInput(f"{name} must be an integer number of sats")

    if amount < minimum:
        raise InvalidInput(f"{name} must be at least {minimum}")
    return amount


def parse_optional_amount(value: Any, name: str, minimum: int = 0) -> Optional[int]:
    if value is None:
        return None
    return parse_amount(value, name, minimum)
