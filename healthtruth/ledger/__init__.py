"""Derived ledger: daily facts, health score, insights and replayable runs.

Modules:
    engine         - DerivedLedger rollup and replay
    facts          - DailyFact aggregation and baseline enrichment
    health_score   - Domain and composite health score
    insights       - Rule-based insights with evidence
    config_loader  - Load/validate scoring.yaml
"""

from healthtruth.ledger.config_loader import ScoringConfig, get_scoring_config
from healthtruth.ledger.engine import DerivedLedger

__all__ = ["DerivedLedger", "ScoringConfig", "get_scoring_config"]
