"""
Database Provisioner - Local Disposable Database Containers

Provisions engine binaries and manages the on-disk state of local database
containers: create, clone, rename and delete across platforms, with retrying
filesystem primitives, cross-process registry locking and cached version
metadata.
"""

__version__ = "0.1.0"
__author__ = "Systems Engineering Portfolio"
