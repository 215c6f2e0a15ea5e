"""Types and errors shared across the automation, mail and reservation layers."""
