"""Consumer-side access to healthtruth.

    api   - httpx ``TruthClient`` for the read/write APIs
    truth - ``load_day_truth`` gating replay responses through the resolver
"""

from healthtruth.client.api import TruthClient
from healthtruth.client.truth import DayTruthView, load_day_truth, require_current

__all__ = ["TruthClient", "DayTruthView", "load_day_truth", "require_current"]
