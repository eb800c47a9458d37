"""Bridge layer: wraps third-party primitives behind apprunner interfaces."""
