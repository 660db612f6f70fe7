"""SQLite persistence for task runs and stack runs."""
