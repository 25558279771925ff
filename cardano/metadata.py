"""
CIP-25 (label 721) metadata for minted assets.
"""

import json
import os
from typing import Any, Dict, Optional

from errors.exceptions import ConfigurationError

NFT_METADATA_LABEL = "721"
CIP25_VERSION = 2


def load_template(path: Optional[str]) -> Dict[str, Any]:
    """Extra per-asset fields (image, mediaType, files, ...) from a JSON file"""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            template = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Cannot read metadata template {path}: {e}")
    if not isinstance(template, dict):
        raise ConfigurationError(f"Metadata template {path} must be a JSON object")
    return template


def build_metadata(policy_id: str, asset_name: str, asset_name_hex: str,
                   template: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    # Version 2 keys assets by their hex name
    fields = dict(template or {})
    fields["name"] = asset_name
    return {
        NFT_METADATA_LABEL: {
            policy_id: {asset_name_hex: fields},
            "version": CIP25_VERSION,
        }
    }


def write_metadata(metadata: Dict[str, Any], path: str) -> str:
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(metadata, f, indent=2)
    return path
