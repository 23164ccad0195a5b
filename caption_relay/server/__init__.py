"""HTTP surface of the caption relay (FastAPI app and record store)."""
