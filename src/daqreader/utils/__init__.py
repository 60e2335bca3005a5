"""Utility functions and tools used across the daqreader package.

- `enums`: Enumerated subsystems, fragment types and subdetectors
- `factory`: Instantiate classes from configuration blocks
- `logger`: Logging configuration
"""
