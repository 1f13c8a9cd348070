"""HTTP blueprints of the portal (JSON only)."""
