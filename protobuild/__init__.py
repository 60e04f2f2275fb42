"""
protobuild — protoc installation and .proto compilation for Python builds.
"""

__version__ = "0.4.0"
