"""Backtest engine package.

Replays an ordered market data series through the long-benchmark /
short-alt strategy. Entry points live in btcdom.backtest.runner; grid
search over parameters lives in btcdom.backtest.sweep.
"""
