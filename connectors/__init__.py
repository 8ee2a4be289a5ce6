"""
connectors — connection lifecycle for external farm-data providers.

Provides:
  • Credential storage (in-memory and SQL, Fernet-encrypted at rest)
  • Single-flight token refresh
  • Error classification into a closed set of categories
  • Parallel capability probes and connection-state evaluation
  • ``ConnectionManager`` facade: check_status / connect / disconnect / fetch

Each provider (John Deere, Auravant, …) is a subclass of BaseConnector.
"""
