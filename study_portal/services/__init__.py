"""Domain services backing the study portal."""
