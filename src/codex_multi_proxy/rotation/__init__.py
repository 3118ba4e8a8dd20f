"""Multi-account rotation: credential store, account pool, token lifecycle."""
