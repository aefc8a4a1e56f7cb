"""DevTaskr: a task board client that keeps tasks in sync with a shared store."""
