"""HTTP transport for the admission webhook."""
