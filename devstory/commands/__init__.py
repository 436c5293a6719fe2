"""CLI command implementations. Each module exposes cmd_<name>(args, config, store) -> int."""
