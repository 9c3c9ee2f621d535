"""Core domain: models, context, enrichment and configuration."""
