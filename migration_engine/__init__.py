"""
Migration Engine

Moves tabular records from legacy sources into a target schema.

Supports:
- Source profiling with semantic pattern detection
- Confidence-scored mapping suggestions with history-based learning
- Human review and confirmation of mappings
- Per-cell lineage, duplicate detection and quality scoring
- Pre-migration snapshots with approved rollback
- Retry queue for transient infrastructure failures
"""

__version__ = "0.1.0"
