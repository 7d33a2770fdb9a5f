"""tripsense - automatic trip detection for connected vehicles."""
