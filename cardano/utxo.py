"""
Parsers for ``cardano-cli query utxo`` JSON.

Two shapes are seen in the wild depending on the cli release:

older::

    {"<txhash>#<ix>": [{"unit": "lovelace", "quantity": "5000000"},
                       {"unit": "<policy><name>", "quantity": "1"}]}

newer::

    {"<txhash>#<ix>": {"address": "...",
                       "value": {"lovelace": 5000000,
                                 "<policy>": {"<name>": 1}}}}

``parse_utxo_json`` tries each shape in order and uses the first that parses.
"""

from typing import Any, Callable, Dict, List

from errors.exceptions import SourceError
from models.models import FundUnit


def _quantity(raw: Any) -> int:
    if isinstance(raw, bool):
        raise ValueError(f"invalid quantity {raw!r}")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        return int(raw)
    raise ValueError(f"invalid quantity {raw!r}")


def _asset_quantity(raw: Any) -> int:
    # Unparseable native asset quantities still mark the unit as carrying assets
    try:
        return _quantity(raw)
    except ValueError:
        return 0


def parse_legacy_shape(data: Any) -> List[FundUnit]:
    if not isinstance(data, dict):
        raise ValueError("expected an object keyed by tx input")

    units = []
    for txin, amounts in data.items():
        if not isinstance(amounts, list):
            raise ValueError(f"{txin}: expected a list of unit/quantity pairs")
        lovelace = 0
        assets: Dict[str, int] = {}
        for amount in amounts:
            unit = amount["unit"]
            if unit == "lovelace":
                lovelace = _quantity(amount["quantity"])
            else:
                assets[unit] = _asset_quantity(amount.get("quantity"))
        units.append(FundUnit(id=txin, value=lovelace, assets=assets))
    return units


def parse_value_shape(data: Any) -> List[FundUnit]:
    if not isinstance(data, dict):
        raise ValueError("expected an object keyed by tx input")

    units = []
    for txin, entry in data.items():
        if not isinstance(entry, dict):
            raise ValueError(f"{txin}: expected an object")
        value = entry.get("value")
        if not isinstance(value, dict):
            continue
        lovelace = 0
        assets: Dict[str, int] = {}
        for unit, quantity in value.items():
            if unit == "lovelace":
                lovelace = _quantity(quantity)
                continue
            if isinstance(quantity, dict):
                for asset_name, asset_qty in quantity.items():
                    assets[f"{unit}.{asset_name}"] = _asset_quantity(asset_qty)
            else:
                assets[unit] = _asset_quantity(quantity)
        units.append(FundUnit(id=txin, value=lovelace, assets=assets))
    return units


UTXO_PARSERS: List[Callable[[Any], List[FundUnit]]] = [
    parse_legacy_shape,
    parse_value_shape,
]


def parse_utxo_json(data: Any) -> List[FundUnit]:
    """Parse decoded ``query utxo`` output into fund units"""
    failures = []
    for parser in UTXO_PARSERS:
        try:
            return parser(data)
        except (KeyError, TypeError, ValueError) as e:
            failures.append(f"{parser.__name__}: {e}")
    raise SourceError(f"Unrecognized UTxO JSON ({'; '.join(failures)})")
