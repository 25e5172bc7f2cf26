# bootstrap/config/__init__.py
"""
Compile options for the boot compiler.
"""

from .compile_options import CompileOptions

__all__ = ['CompileOptions']
