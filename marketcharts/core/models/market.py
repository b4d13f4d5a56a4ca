"""Market-related enums and symbol lookups."""

from enum import Enum


class IndexName(str, Enum):
    """Tracked stock indices."""

    SP500 = "S&P 500"
    DOW = "Dow Jones"
    NASDAQ = "NASDAQ"


SYMBOL_TO_INDEX: dict[str, IndexName] = {
    "^GSPC": IndexName.SP500,
    "^DJI": IndexName.DOW,
    "^IXIC": IndexName.NASDAQ,
}

INDEX_TO_SYMBOL: dict[IndexName, str] = {index: symbol for symbol, index in SYMBOL_TO_INDEX.items()}


def index_name_for_symbol(symbol: str) -> IndexName | str:
    """Map a ticker symbol to its index, passing unknown symbols through unchanged."""
    return SYMBOL_TO_INDEX.get(symbol, symbol)


def symbol_for_index(index_name: IndexName | str) -> str:
    """Reverse of ``index_name_for_symbol``."""
    label = index_label(index_name)
    for index, symbol in INDEX_TO_SYMBOL.items():
        if index.value == label:
            return symbol
    return label


def index_label(index_name: IndexName | str) -> str:
    """Plain string form of an index name, used for keys and storage."""
    if isinstance(index_name, IndexName):
        return index_name.value
    return index_name


def coerce_index_name(value: IndexName | str) -> IndexName | str:
    """Return the ``IndexName`` member for a known label, otherwise the label itself."""
    if isinstance(value, IndexName):
        return value
    for index in IndexName:
        if index.value == value:
            return index
    return value
