"""OAuth client and credential decoding helpers."""
