"""Domain layer of the membership module: models and errors."""
