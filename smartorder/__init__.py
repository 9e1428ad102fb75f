"""Smart Order restaurant table and order service."""
