"""Browser automation for the facility reservation flow."""
