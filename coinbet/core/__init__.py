"""Settlement core: fairness, wallet store, bet ledger."""
