"""
auth — User authentication module.

Provides:
  • Signed session token creation & verification
  • Password hashing (bcrypt)
  • Login / logout API routes
  • ``get_current_user`` and ``require_admin`` FastAPI dependencies
"""
