"""HTTP surface for assistance service lookup, refresh and manual curation."""
