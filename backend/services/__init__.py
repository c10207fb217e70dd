"""Services package: client sync, merge reconciliation, webhook dispatch."""
