"""
Command modules for Tether plugin.

This package contains command handlers organized by functionality:
- debug.py: Status and diagnostic commands
- kernel_mgmt.py: Kernel server connection and kernel lifecycle commands
"""
