"""Infrastructure adapters: SQLite storage, HTTP fetching and observability."""
