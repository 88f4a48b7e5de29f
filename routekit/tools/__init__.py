"""Developer command-line tools for routekit."""
