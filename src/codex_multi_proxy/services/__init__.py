"""Request orchestration and its injected collaborators."""
