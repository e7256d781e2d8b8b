"""Intake core for hardcode.

Turns "a complete media file appeared in the source directory" into one
durable transcoding job on the ``stack_encode`` queue. Keep the moving
parts here so the CLI in ``hardcode.py`` stays small and testable.
"""

__version__ = "0.1.0"

__all__ = [
    "dispatch",
    "driver",
    "errors",
    "lock",
    "publisher",
    "relocator",
    "scheduling",
    "stability",
    "worker",
]
