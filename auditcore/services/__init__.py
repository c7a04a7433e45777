"""Service layer: persistence, audit writer, ledger and scheduled jobs."""
