"""gbif-taxonomy: a taxonomy of biological taxa built from GBIF."""
