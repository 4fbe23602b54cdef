# HTTP blueprints, one per domain area.
