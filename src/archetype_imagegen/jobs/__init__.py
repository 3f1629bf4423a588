"""Image generation job queue: store, coordinator, pipeline, reporting."""
