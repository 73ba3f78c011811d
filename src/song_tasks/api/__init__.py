"""HTTP surface for task submission, callbacks and owner-only reads."""
