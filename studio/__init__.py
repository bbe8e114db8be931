"""Shot generation, draft state and clip reconciliation engine."""
