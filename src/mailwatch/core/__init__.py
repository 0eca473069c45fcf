"""Process-level plumbing shared by the service and the CLI."""
