"""HTTP server mode for certmgmt.

Provides a lightweight stdlib-based HTTP API over the certificate
management service, with sessions standing in for the install/rotate
streams.
"""
from __future__ import annotations

from certmgmt.server.app import CertManagementHandler, create_server, run_server

__all__ = ["CertManagementHandler", "create_server", "run_server"]
