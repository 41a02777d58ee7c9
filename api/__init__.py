"""REST interface for the people counter core."""
