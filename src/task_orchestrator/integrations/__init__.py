"""Optional side-effect collaborators used by the dispatch pipeline."""
