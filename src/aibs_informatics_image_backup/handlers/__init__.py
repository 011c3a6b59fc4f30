"""Lambda handler implementations."""
