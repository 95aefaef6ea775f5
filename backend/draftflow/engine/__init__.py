"""Client-side draft engine: progress, local cache, auto-save and the controller."""
