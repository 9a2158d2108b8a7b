"""HTTP surface for the babylog record store."""
