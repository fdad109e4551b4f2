"""On-demand XYZ tiles and band-algebra tiles from multi-band GeoTIFFs."""
