"""Generation history -- one table per pipeline kind, async repository."""
