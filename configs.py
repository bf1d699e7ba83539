from os import environ

db_path = environ.get("DB_PATH", "cart.db")
max_nesting_depth = int(environ.get("MAX_NESTING_DEPTH", 32))
# One of "reject", "sanitize", "both".
write_policy = environ.get("WRITE_POLICY", "reject").lower()
log_level = environ.get("LOG_LEVEL", "INFO").upper()
host = environ.get("HOST", "0.0.0.0")
port = int(environ.get("PORT", 8080))
