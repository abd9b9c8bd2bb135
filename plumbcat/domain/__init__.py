"""Domain types, rules and exceptions."""
