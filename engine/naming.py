"""Asset names derived from mint sequence numbers: ``"<prefix> <n>"``."""

from typing import Optional, Tuple


def asset_name(prefix: str, sequence: int) -> str:
    return f"{prefix} {sequence}"


def encode_name(name: str) -> str:
    """On-chain asset names are hex-encoded UTF-8"""
    return name.encode("utf-8").hex()


def derive_names(prefix: str, sequence: int) -> Tuple[str, str]:
    name = asset_name(prefix, sequence)
    return name, encode_name(name)


def parse_sequence(name: str, prefix: str) -> Optional[int]:
    """Sequence number from a display name, or None if it is not one of ours"""
    head = f"{prefix} "
    if not name.startswith(head):
        return None
    digits = name[len(head):]
    if not digits.isdigit():
        return None
    return int(digits)


def sequence_from_asset(asset: str, policy_id: str, prefix: str) -> Optional[int]:
    """Sequence number from a ``<policy_id><hex name>`` asset id"""
    name_hex = asset[len(policy_id):] if asset.startswith(policy_id) else asset
    if not name_hex:
        return None
    try:
        name = bytes.fromhex(name_hex).decode("utf-8")
    except ValueError:
        return None
    return parse_sequence(name, prefix)
