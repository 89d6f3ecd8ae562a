"""DB repositories: sync functions taking a Database and returning detached read models."""
