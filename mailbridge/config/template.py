"""Default configuration template.

This template is written to ~/.config/mailbridge/config.toml
when running `mailbridge config init`.
"""

CONFIG_TEMPLATE = """\
# mailbridge configuration
#
# Every setting is optional; the values below are the defaults.

[auth]
# Port for the local OAuth callback (http://localhost:<port>/oauth2callback).
# It must match a redirect URI registered for your OAuth client.
port = 3000
# Seconds to wait for the browser to come back before giving up.
timeout_seconds = 300

[cache]
# Seconds that fetched mailbox profile data stays fresh.
ttl_seconds = 300

[remote]
# Upper bound in seconds for a single Gmail API call.
timeout_seconds = 30
# Upper bound in seconds for the profile and email lookups.
profile_timeout_seconds = 10

[logging]
# DEBUG, INFO, WARNING or ERROR. MAILBRIDGE_LOG_LEVEL takes precedence.
level = "WARNING"

# OAuth client credentials are read from gcp-oauth.keys.json, found via
# MAILBRIDGE_OAUTH_PATH, ~/.mailbridge/, or the project root.
#
# After placing the keys file, authorize an account with:
#   mailbridge accounts add work
"""
