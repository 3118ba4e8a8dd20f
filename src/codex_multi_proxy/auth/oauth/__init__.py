"""OAuth 2.0 (PKCE) client for the OpenAI auth server."""
