"""
auth — User authentication for the connector API.

Provides:
  • Signed user token creation & verification
  • ``get_current_user_id`` FastAPI dependency
"""
