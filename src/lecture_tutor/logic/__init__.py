"""Pure session logic: reducer, auto-advance decision and answer gate."""
