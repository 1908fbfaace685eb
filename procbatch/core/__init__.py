"""Small stable building blocks shared by the runtime (clock helpers)."""
