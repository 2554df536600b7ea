"""
Kastrace: concurrent address discovery and transaction history crawling
for the Kaspa REST API.

Fans out many paged transaction fetches under a bounded concurrency limit,
retries transient failures through a shared retry ledger, and merges the
results into a single aggregate.
"""

__version__ = "0.1.0"
