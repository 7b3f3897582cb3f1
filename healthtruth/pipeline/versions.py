"""Version stamps threaded through normalization and the derived ledger."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PipelineVersions:
    """The version triple stamped on canonical events, plus the derived
    pipeline version stamped on every ledger output.

    Attributes:
        schema_version:    Raw-event schema version the mappers accept by default.
        canonical_version: Shape of the canonical event document.
        logic_version:     Version of the mapping logic. Bumping it makes
                           reprocessing produce new canonical events.
        pipeline_version:  Version of the rollup computation.
    """

    schema_version: int = 1
    canonical_version: int = 1
    logic_version: int = 1
    pipeline_version: int = 1
