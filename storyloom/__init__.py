"""Book-context engine: planning context budgeting and chunked semantic search."""

__version__ = "0.1.0"
