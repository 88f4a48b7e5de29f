"""Runtime configuration for routekit."""
