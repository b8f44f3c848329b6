"""Remote gazetteer sources and GeoNames import."""
