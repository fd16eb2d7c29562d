"""Unit normalization and price-text parsing."""

from grocerypricing.normalize.units import (
    PackSize,
    UnitPriceLabel,
    convert,
    convert_needed_to_unit,
    grams_per_each,
    identify_unit_type,
    normalize_price,
    parse_pack_size,
    parse_quantity_string,
    parse_unit_price_label,
    to_grams,
)

__all__ = [
    "PackSize",
    "UnitPriceLabel",
    "convert",
    "convert_needed_to_unit",
    "grams_per_each",
    "identify_unit_type",
    "normalize_price",
    "parse_pack_size",
    "parse_quantity_string",
    "parse_unit_price_label",
    "to_grams",
]
