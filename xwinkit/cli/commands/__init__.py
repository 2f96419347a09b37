"""
Command implementations; each module exposes ``run(args) -> int``.
"""
