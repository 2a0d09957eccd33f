"""Projects and tasks: data access, filtering, sorting and view state."""
