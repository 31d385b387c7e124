"""HTTP and WebSocket surface for QueryLift."""
