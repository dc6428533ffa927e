"""Historical market analysis and wallet backfill."""
