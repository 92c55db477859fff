"""Detection layer - swap classification and alert enrichment."""
