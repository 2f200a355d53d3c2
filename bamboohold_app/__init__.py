"""BambooHold HTTP service."""
