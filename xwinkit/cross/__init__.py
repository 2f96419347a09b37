"""
Windows MSVC cross-compilation support.

Target resolution, the SDK/CRT cache with its providers and the assembly of
the per-target build environment.
"""
