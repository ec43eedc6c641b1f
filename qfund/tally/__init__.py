from __future__ import annotations
"""
qfund.tally
===========

Ingestion side of a round: the typed tally document produced upstream and the
batch-accumulating, sealable commitment built from it.
"""

from .commitment import TallyCommitment, commitment_digest
from .records import TallyBatch, TallyRecord, load_tally

__all__ = ["TallyCommitment", "commitment_digest", "TallyBatch", "TallyRecord", "load_tally"]
