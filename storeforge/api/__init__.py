"""HTTP surface for the assistant stream (optional ``api`` extra)."""
