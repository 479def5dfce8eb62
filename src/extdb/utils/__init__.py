"""Connection and engine helpers shared by the access layer."""
