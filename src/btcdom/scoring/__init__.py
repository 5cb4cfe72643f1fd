"""Short-candidate scoring: component scores, memoization and selection."""
