"""OAuth constants for the OpenAI auth server used by the Codex CLI.

The client id only accepts the localhost:1455 callback, so the CLI login
flow prints the authorization URL and takes the returned code by hand.
"""

# OAuth Authorization Server
OAUTH_AUTHORIZE_URL = "https://auth.openai.com/oauth/authorize"
OAUTH_TOKEN_URL = "https://auth.openai.com/oauth/token"

# Client Configuration
OAUTH_CLIENT_ID = "app_EMoamEEZ73f0CkXaXp7hrann"
OAUTH_REDIRECT_URI = "http://localhost:1455/auth/callback"
OAUTH_SCOPE = "openid profile email offline_access"

# Claim holding the ChatGPT account identity inside the access token
JWT_AUTH_CLAIM = "https://api.openai.com/auth"
JWT_ACCOUNT_ID_FIELD = "chatgpt_account_id"

# Used when the token response omits expires_in
DEFAULT_TOKEN_EXPIRY_SECONDS = 3600
