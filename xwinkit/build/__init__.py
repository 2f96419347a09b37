"""
Cargo invocation: dispatch of subcommands and emulated execution.
"""
