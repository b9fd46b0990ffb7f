"""AI Visibility Checkup: heuristic scoring of how well a page can be read by AI crawlers."""
