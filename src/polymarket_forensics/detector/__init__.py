"""Scoring layer - Suspicious trade identification."""

from polymarket_forensics.detector.account_history import AccountHistorySignal
from polymarket_forensics.detector.classifier import TradeClassifier
from polymarket_forensics.detector.conviction import ConvictionSignal
from polymarket_forensics.detector.models import (
    AggregatedScore,
    PriceImpact,
    ScoredTrade,
    ScoringContext,
    SignalReason,
    SignalResult,
    TradeTag,
)
from polymarket_forensics.detector.scorer import SignalAggregator, TradeScorer
from polymarket_forensics.detector.trade_size import TradeSizeSignal

__all__ = [
    "AccountHistorySignal",
    "AggregatedScore",
    "ConvictionSignal",
    "PriceImpact",
    "ScoredTrade",
    "ScoringContext",
    "SignalAggregator",
    "SignalReason",
    "SignalResult",
    "TradeClassifier",
    "TradeScorer",
    "TradeSizeSignal",
    "TradeTag",
]
