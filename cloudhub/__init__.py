"""
CloudHub

Links Google Drive, Dropbox and OneDrive accounts to one local identity and
exposes unified file operations across all of them:
- Aggregated listing and search
- Capacity-based upload placement
- Download and delete on a specific provider
- Cached storage-usage ledger with remote reconciliation
"""

__version__ = "1.2.0"
