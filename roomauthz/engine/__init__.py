"""Decision pipeline: role -> diff -> invariants -> permission matrix."""
