"""codesift - local, disk-persisted code search.

Text search (BM25, literal and regex) with optional semantic ranking from
local embeddings, fused into one ranked list per query.
"""

__version__ = "0.1.0"
