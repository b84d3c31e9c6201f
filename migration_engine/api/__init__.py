"""HTTP API for inspecting and steering migration batches."""
