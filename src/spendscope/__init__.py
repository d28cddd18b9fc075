"""SpendScope - categorize credit card spending and build dashboard summaries."""

__version__ = '0.1.0'
