"""
Compiler backends and tool links for the cross toolchain.
"""
