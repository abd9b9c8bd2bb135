"""Infrastructure: configuration, database, logging, image hosting."""
