"""Message aggregation backend: participants, conversations and summaries."""
