"""vmprov - Debian/Ubuntu VM provisioning CLI

Philosophy:
- Ruthless simplicity
- Brick architecture (self-contained modules)
- Misdetection never aborts provisioning

vmprov installs a common package set on a fresh VM, detects whether it runs
on AWS or Azure through the instance metadata service, and installs the
matching cloud CLI.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
