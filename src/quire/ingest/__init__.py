"""Content extraction: per-type adapters turning sources into documents."""
