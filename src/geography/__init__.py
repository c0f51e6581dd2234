"""Geographic hierarchy resolution and household code assignment engine."""
