"""
Command-line interface entry points for entagg.

Entry points:
- entagg: Filter entities and print property value histograms
- entagg-import: Load an entity file into a SQLite database
"""
