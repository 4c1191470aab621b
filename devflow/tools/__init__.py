"""Shell and git tooling used by the default activities."""
