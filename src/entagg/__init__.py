"""
entagg - filter typed entity collections and aggregate property values.

Pipeline stages:
  - filters:   parse ``key:v1,v2`` expressions and select entities
  - aggregate: count property values and sort them into histograms

Entity sources:
  - entities:  JSON / JSONL files
  - store:     SQLite database (one table per model)
"""

__version__ = "0.3.0"
