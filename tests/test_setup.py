"""Test that the project setup is working correctly."""

import polymarket_trade_indexer


def test_version() -> None:
    """Test that version is defined."""
    assert polymarket_trade_indexer.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from polymarket_trade_indexer import api
    from polymarket_trade_indexer import decoder
    from polymarket_trade_indexer import indexer
    from polymarket_trade_indexer import ingestor
    from polymarket_trade_indexer import storage

    # Just verify imports work
    assert api is not None
    assert decoder is not None
    assert indexer is not None
    assert ingestor is not None
    assert storage is not None
