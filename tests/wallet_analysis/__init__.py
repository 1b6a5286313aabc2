"""
Tests for wallet analysis.

- Aggregation and merge helpers
- Scoring and snapshot building
- Summary generation
- End-to-end orchestration with fake providers
"""
