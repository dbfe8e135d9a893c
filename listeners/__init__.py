"""Built-in event listeners wired at startup."""
