from polymarket_trade_indexer.cli import run

run()
