"""
Operix - Command Line Interface

Main CLI entry point for serving and inspecting the application.
"""
from cli.main import app, build_application, main

__all__ = ["app", "build_application", "main"]
